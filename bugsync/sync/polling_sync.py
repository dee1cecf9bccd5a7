from typing import Any, Awaitable, Callable, Dict, List, Optional

from bugsync.models.sync import CheckpointPolicy, SyncConfig, SyncResult
from bugsync.services.bug_service import BugService, page_items
from bugsync.services.error_classifier import UpstreamError
from bugsync.services.stores import BugStore, SyncStateStore
from bugsync.sync.scheduler import TaskScheduler
from bugsync.utils.logger import debugLog, errorLog, infoLog, warnLog
from bugsync.utils.time_utils import Clock, ms_to_datetime, now_ms

MODULE_NAME = "PollingSync"

ResultListener = Callable[[SyncResult], None]


def error_details(error: Exception) -> Any:
    if isinstance(error, UpstreamError):
        return error.envelope
    return f"{type(error).__name__}: {error}"


class PollingSync:
    """
    Aktiver Puller: lädt in festem Intervall alle Seiten jeder aktivierten Entität
    vom Primärsystem und übergibt die Items an den lokalen Speicher.
    """

    def __init__(
        self,
        config: SyncConfig,
        bug_service: BugService,
        bug_store: BugStore,
        state_store: SyncStateStore,
        scheduler: TaskScheduler,
        clock: Clock = now_ms,
    ):
        self.config = config
        self.bug_service = bug_service
        self.state_store = state_store
        self.scheduler = scheduler
        self._clock = clock
        self.is_running = False
        self.last_result: Optional[SyncResult] = None
        self._timer_token: Optional[int] = None
        self._run_id = 0
        self._listeners: List[ResultListener] = []

        self._fetchers: Dict[str, Callable[[int], Awaitable[Any]]] = {
            "bugs": lambda page: self.bug_service.get_bugs(page=page, page_size=self.config.batchSize),
        }
        self._item_handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "bugs": bug_store.upsert,
        }

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self.is_running:
            warnLog(MODULE_NAME, "Polling sync is already running")
            return

        self.is_running = True
        self._run_id += 1
        run_id = self._run_id
        infoLog(MODULE_NAME, f"Starting polling sync, interval: {self.config.intervalMs}ms")

        async def scheduled_cycle():
            await self.perform_sync(run_id)

        self._timer_token = self.scheduler.call_every(
            self.config.intervalMs, scheduled_cycle, run_immediately=True, name="polling-sync"
        )

    def stop(self) -> None:
        if self._timer_token is not None:
            self.scheduler.cancel(self._timer_token)
            self._timer_token = None
        was_running = self.is_running
        self.is_running = False
        # Laufende Zyklen des alten Laufs werden verworfen
        self._run_id += 1
        if was_running:
            infoLog(MODULE_NAME, "Polling sync stopped")

    async def run_once(self) -> Optional[SyncResult]:
        """Führt einen Zyklus sofort aus, unabhängig vom Timer."""
        return await self.perform_sync(None)

    def _is_stale(self, run_id: Optional[int]) -> bool:
        return run_id is not None and (not self.is_running or run_id != self._run_id)

    async def perform_sync(self, run_id: Optional[int] = None) -> Optional[SyncResult]:
        started = self._clock()
        result = SyncResult(lastSyncTime=ms_to_datetime(started))
        infoLog(MODULE_NAME, "Starting data sync cycle...", details={"entities": self.config.enabledEntities})

        for entity in self.config.enabledEntities:
            if entity not in self._fetchers:
                result.success = False
                result.errors.append({"entity": entity, "error": f"Unsupported entity: {entity}"})
                errorLog(MODULE_NAME, f"No fetcher registered for entity '{entity}'")
                continue

            entity_result = await self._sync_entity(entity, run_id)
            if entity_result is None:
                infoLog(MODULE_NAME, "Polling sync stopped during cycle, discarding result")
                return None

            result.syncedCount += entity_result["syncedCount"]
            result.failedCount += entity_result["failedCount"]
            result.errors.extend(entity_result["errors"])
            if entity_result["pageFailed"]:
                result.success = False

        if self._is_stale(run_id):
            infoLog(MODULE_NAME, "Polling sync stopped during cycle, discarding result")
            return None

        result.durationMs = self._clock() - started
        infoLog(MODULE_NAME, f"Data sync finished in {result.durationMs}ms, synced: {result.syncedCount}, failed: {result.failedCount}")
        self.last_result = result
        for listener in self._listeners:
            listener(result)
        return result

    async def _sync_entity(self, entity: str, run_id: Optional[int]) -> Optional[Dict[str, Any]]:
        fetch = self._fetchers[entity]
        handle_item = self._item_handlers[entity]
        synced = 0
        failed = 0
        errors: List[Dict[str, Any]] = []
        page_failed = False
        page = 1

        while True:
            if self._is_stale(run_id):
                return None
            try:
                page_data = await fetch(page)
            except Exception as e:
                # Kein Retry im selben Zyklus; der nächste Zyklus versucht es erneut
                page_failed = True
                errors.append({"entity": entity, "page": page, "error": error_details(e)})
                warnLog(MODULE_NAME, f"Fetching page {page} of {entity} failed, stop paging", details={"error": str(e)})
                break

            if self._is_stale(run_id):
                return None

            items = page_items(page_data)
            if not items:
                break

            for item in items:
                try:
                    await handle_item(item)
                    synced += 1
                except Exception as e:
                    failed += 1
                    item_id = item.get("id") if isinstance(item, dict) else None
                    errors.append({"entity": entity, "itemId": item_id, "error": error_details(e)})
                    debugLog(MODULE_NAME, f"Syncing {entity} item {item_id} failed", details={"error": str(e)})

            if len(items) != self.config.batchSize:
                break
            page += 1

        if self._should_advance_checkpoint(page_failed, failed):
            try:
                self.state_store.set_checkpoint(f"polling:{entity}", ms_to_datetime(self._clock()))
            except Exception as e:
                errors.append({"entity": entity, "error": f"Checkpoint update failed: {e}"})
                errorLog(MODULE_NAME, f"Could not update checkpoint for {entity}", details={"error": str(e)})
        else:
            infoLog(MODULE_NAME, f"Checkpoint for {entity} kept, cycle had failures", details={
                "pageFailed": page_failed, "failedItems": failed
            })

        return {"syncedCount": synced, "failedCount": failed, "errors": errors, "pageFailed": page_failed}

    def _should_advance_checkpoint(self, page_failed: bool, failed_items: int) -> bool:
        if self.config.checkpointPolicy == CheckpointPolicy.OPTIMISTIC:
            return True
        return not page_failed and failed_items == 0

    def get_status(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "config": self.config.model_dump(mode="json"),
            "lastResult": self.last_result.model_dump(mode="json") if self.last_result else None,
        }
