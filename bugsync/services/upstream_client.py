import re
from typing import Any, Dict, Optional

import httpx

from bugsync import config
from bugsync.services.error_classifier import ErrorClassifier, UpstreamError
from bugsync.services.signature import SignatureCodec, canonical_json
from bugsync.utils.logger import debugLog
from bugsync.utils.time_utils import Clock, now_ms

MODULE_NAME = "UpstreamClient"
SERVICE_NAME = "Primary system"


def operation_for(method: str, path: str) -> str:
    """Leitet aus Methode und Pfad einen lesbaren Operationsnamen für Logs ab."""
    method = method.upper()
    if "/bugs/getbugs" in path:
        return "list bugs"
    if "/bugs/batch/resolve" in path:
        return "batch resolve bugs"
    if re.search(r"/bugs/[^/]+/resolve$", path):
        return "resolve bug"
    if re.search(r"/bugs/[^/]+$", path) and method == "GET":
        return "get bug detail"
    return {
        "GET": "fetch data",
        "POST": "submit data",
        "PUT": "update data",
        "DELETE": "delete data",
    }.get(method, "perform request")


class UpstreamClient:
    """
    Signierter HTTP-Client für das Primärsystem.

    Jeder Request erhält einen frischen Zeitstempel und eine Signatur über genau
    den Body, der übertragen wird. Fehler werden über den ErrorClassifier
    klassifiziert und als UpstreamError geworfen. Keine Wiederholungen hier,
    das übernehmen die Pull-Strategien im nächsten Zyklus.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        codec: SignatureCodec,
        classifier: Optional[ErrorClassifier] = None,
        timeout: float = config.UPSTREAM_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = now_ms,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.codec = codec
        self.classifier = classifier or ErrorClassifier()
        self._clock = clock
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    def signed_headers(self, method: str, path: str, body: Any = None) -> Dict[str, str]:
        timestamp = str(self._clock())
        signature = self.codec.sign(self.codec.context(method.upper(), path, timestamp, body))
        return {
            "x-api-key": self.api_key,
            "x-timestamp": timestamp,
            "x-signature": signature,
            "content-type": "application/json",
        }

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        method = method.upper()
        headers = self.signed_headers(method, path, body)
        content = canonical_json(body) if body is not None else None
        debugLog(MODULE_NAME, f"{method} {path}", details={"has_body": body is not None})
        try:
            response = await self._client.request(method, path, content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            context = {
                "service": SERVICE_NAME,
                "operation": operation_for(method, path),
                "requestData": body,
            }
            envelope = self.classifier.handle(exc, context)
            raise UpstreamError(self.classifier.classify(exc), envelope) from exc
        return _parse_body(response)

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
