from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from bugsync.models.sync import WebHookAction, WebHookConfig, WebHookEvent, WebHookRequest, WebHookResponse
from bugsync.services.signature import SignatureCodec
from bugsync.services.stores import BugStore
from bugsync.utils.logger import debugLog, errorLog, infoLog, warnLog
from bugsync.utils.time_utils import Clock, now_ms

MODULE_NAME = "WebHookSync"

EventHandler = Callable[[WebHookEvent], Awaitable[None]]


def _reject(status_code: int, message: str) -> WebHookResponse:
    return WebHookResponse(statusCode=status_code, body={"error": message})


class WebHookSync:
    """
    Passiver Empfänger für Änderungsereignisse des Primärsystems.

    Ablauf pro Request: Signatur prüfen (401), Zeitstempel prüfen (400),
    Event parsen und gegen die Allow-List prüfen (400), dann nach
    ``entityType`` an einen Handler verteilen. Ausnahmen im Handler ergeben
    eine 500-Antwort, deren ``error`` gesetzt ist.
    """

    def __init__(
        self,
        config: WebHookConfig,
        bug_store: BugStore,
        codec: Optional[SignatureCodec] = None,
        clock: Clock = now_ms,
    ):
        self.config = config
        self.bug_store = bug_store
        self.codec = codec or SignatureCodec(config.secretKey, window_ms=config.maxTimestampDrift, clock=clock)
        self._handlers: Dict[str, EventHandler] = {
            "bug": self._handle_bug_event,
        }

    def register_handler(self, entity_type: str, handler: EventHandler) -> None:
        self._handlers[entity_type] = handler
        debugLog(MODULE_NAME, f"Registered webhook handler for entity type '{entity_type}'")

    async def handle_webhook(self, request: WebHookRequest) -> WebHookResponse:
        timestamp = request.header("x-timestamp")
        signature = request.header("x-signature")

        ctx = self.codec.context(request.method, request.path, timestamp, request.body)
        if not timestamp or not self.codec.verify(signature, ctx):
            warnLog(MODULE_NAME, "Invalid webhook signature", details={"path": request.path})
            return _reject(401, "Invalid signature")

        if self.codec.is_expired(timestamp):
            warnLog(MODULE_NAME, "Webhook request expired", details={"timestamp": timestamp})
            return _reject(400, "Request expired")

        try:
            event = WebHookEvent.model_validate(request.body)
        except ValidationError as e:
            warnLog(MODULE_NAME, "Invalid webhook event payload", details={"errors": e.errors(include_url=False)})
            return _reject(400, "Invalid event payload")

        if event.eventType not in self.config.allowedEvents:
            warnLog(MODULE_NAME, f"Event type not allowed: {event.eventType}")
            return _reject(400, "Event type not allowed")

        try:
            await self.process_event(event)
        except Exception as e:
            errorLog(MODULE_NAME, "Webhook processing failed", details={
                "eventType": event.eventType,
                "entityId": event.entityId,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            return WebHookResponse(
                statusCode=500,
                body={"error": "Internal server error"},
                error=str(e) or type(e).__name__,
            )

        return WebHookResponse(statusCode=200, body={"status": "success", "eventId": event.entityId})

    async def process_event(self, event: WebHookEvent) -> None:
        infoLog(MODULE_NAME, f"Processing webhook event: {event.eventType}", details={
            "entityType": event.entityType, "entityId": event.entityId, "action": event.action
        })
        handler = self._handlers.get(event.entityType)
        if handler is None:
            warnLog(MODULE_NAME, f"Unknown entity type: {event.entityType}, event acknowledged without action")
            return
        await handler(event)

    async def _handle_bug_event(self, event: WebHookEvent) -> None:
        if event.action in (WebHookAction.CREATED, WebHookAction.UPDATED):
            await self.bug_store.upsert(_bug_payload(event))
        elif event.action == WebHookAction.DELETED:
            await self.bug_store.delete(event.entityId)
        debugLog(MODULE_NAME, f"Bug {event.entityId} {event.action.value} locally")


def _bug_payload(event: WebHookEvent) -> Dict[str, Any]:
    # Fehlt die ID im Payload, wird sie aus dem Event übernommen
    if isinstance(event.data, dict):
        return {"id": event.entityId, **event.data}
    return {"id": event.entityId}
