import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bugsync.models.sync import (
    CheckpointPolicy,
    IncrementalSyncConfig,
    SyncRecord,
    SyncRecordStatus,
    SyncResult,
    SyncTableConfig,
)
from bugsync.services.bug_service import BugService, page_items
from bugsync.services.stores import BugStore, SyncStateStore
from bugsync.sync.polling_sync import error_details
from bugsync.sync.scheduler import TaskScheduler
from bugsync.utils.logger import debugLog, errorLog, infoLog, warnLog
from bugsync.utils.time_utils import Clock, ms_to_datetime, now_ms

MODULE_NAME = "IncrementalSync"

DEFAULT_LOOKBACK = timedelta(hours=1)

ResultListener = Callable[[SyncResult], None]


class SyncStoppedError(Exception):
    pass


class IncrementalSync:
    """
    Inkrementeller Synchronisierer auf Basis eines Zeitstempel-Checkpoints pro Tabelle.

    Jeder Tabellenlauf erzeugt einen SyncRecord, der in jedem Fall (auch bei
    Fehlern) mit Endstatus gespeichert wird.
    """

    def __init__(
        self,
        config: IncrementalSyncConfig,
        bug_service: BugService,
        bug_store: BugStore,
        state_store: SyncStateStore,
        scheduler: TaskScheduler,
        clock: Clock = now_ms,
    ):
        self.config = config
        self.bug_service = bug_service
        self.bug_store = bug_store
        self.state_store = state_store
        self.scheduler = scheduler
        self._clock = clock
        self.is_running = False
        self._timer_token: Optional[int] = None
        self._run_id = 0
        self._listeners: List[ResultListener] = []

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self.is_running:
            warnLog(MODULE_NAME, "Incremental sync is already running")
            return

        self.is_running = True
        self._run_id += 1
        run_id = self._run_id
        infoLog(MODULE_NAME, "Starting incremental sync", details={"check_interval_ms": self.config.checkIntervalMs})

        async def scheduled_run():
            await self.perform_incremental_sync(run_id)

        self._timer_token = self.scheduler.call_every(
            self.config.checkIntervalMs, scheduled_run, run_immediately=True, name="incremental-sync"
        )

    def stop(self) -> None:
        if self._timer_token is not None:
            self.scheduler.cancel(self._timer_token)
            self._timer_token = None
        was_running = self.is_running
        self.is_running = False
        self._run_id += 1
        if was_running:
            infoLog(MODULE_NAME, "Incremental sync stopped")

    async def run_once(self) -> Optional[SyncResult]:
        return await self.perform_incremental_sync(None)

    def _is_stale(self, run_id: Optional[int]) -> bool:
        return run_id is not None and (not self.is_running or run_id != self._run_id)

    def _now(self) -> datetime:
        return ms_to_datetime(self._clock())

    async def perform_incremental_sync(self, run_id: Optional[int] = None) -> Optional[SyncResult]:
        if self._is_stale(run_id):
            return None

        started = self._clock()
        summary = SyncResult(lastSyncTime=ms_to_datetime(started))
        failed_tables = 0
        debugLog(MODULE_NAME, "Starting incremental sync check...")

        for table_config in self.config.syncTables:
            if not table_config.enabled:
                continue
            if self._is_stale(run_id):
                break

            item_errors: List[Dict[str, Any]] = []
            record = await self.sync_table(table_config, run_id, item_errors)
            summary.syncedCount += record.recordCount
            summary.failedCount += record.failedCount
            summary.errors.extend(item_errors)
            if record.status != SyncRecordStatus.SUCCESS:
                summary.success = False
                failed_tables += 1
                summary.errors.append({"table": record.tableName, "error": record.error})

        if self._is_stale(run_id):
            return None

        summary.durationMs = self._clock() - started
        infoLog(MODULE_NAME, f"Incremental sync finished in {summary.durationMs}ms", details={
            "synced": summary.syncedCount, "failedItems": summary.failedCount, "failedTables": failed_tables
        })
        for listener in self._listeners:
            listener(summary)
        return summary

    async def sync_table(
        self,
        table_config: SyncTableConfig,
        run_id: Optional[int] = None,
        item_errors: Optional[List[Dict[str, Any]]] = None,
    ) -> SyncRecord:
        table_name = table_config.tableName
        debugLog(MODULE_NAME, f"Syncing table: {table_name}")

        run_started = self._now()
        record = SyncRecord(
            id=f"{table_name}_{self._clock()}_{uuid.uuid4().hex[:8]}",
            tableName=table_name,
            lastSyncTime=run_started,
            recordCount=0,
            status=SyncRecordStatus.RUNNING,
        )
        if item_errors is None:
            item_errors = []

        try:
            last_sync_time = self.get_last_sync_time(table_name)
            fetch = self._fetcher_for(table_config)
            page = 1

            while True:
                if self._is_stale(run_id):
                    raise SyncStoppedError("Sync stopped before completion")

                page_data = await fetch(last_sync_time, page)
                items = page_items(page_data)
                if not items:
                    break

                for item in items:
                    try:
                        await self._process_item(table_name, item)
                        record.recordCount += 1
                    except Exception as e:
                        record.failedCount += 1
                        item_id = item.get("id") if isinstance(item, dict) else None
                        item_errors.append({"table": table_name, "itemId": item_id, "error": error_details(e)})
                        errorLog(MODULE_NAME, f"Processing {table_name} item {item_id} failed", details={"error": str(e)})

                if len(items) != self.config.batchSize:
                    break
                page += 1

            record.status = SyncRecordStatus.SUCCESS

            if self.config.checkpointPolicy == CheckpointPolicy.OPTIMISTIC or record.failedCount == 0:
                self.state_store.set_checkpoint(_checkpoint_key(table_name), run_started)
            else:
                infoLog(MODULE_NAME, f"Checkpoint for table {table_name} kept, {record.failedCount} items failed")

            infoLog(MODULE_NAME, f"Table {table_name} incremental sync finished, {record.recordCount} records synced")

        except Exception as e:
            record.status = SyncRecordStatus.FAILED
            record.error = str(e) or type(e).__name__
            errorLog(MODULE_NAME, f"Table {table_name} incremental sync failed", details={
                "error": record.error, "error_type": type(e).__name__
            })
        finally:
            try:
                self.state_store.save_sync_record(record)
            except Exception as save_error:
                errorLog(MODULE_NAME, f"Could not save sync record {record.id}", details={"error": str(save_error)})

        return record

    def _fetcher_for(self, table_config: SyncTableConfig):
        if table_config.tableName == "bugs":
            async def fetch_bugs(since: datetime, page: int) -> Any:
                return await self.bug_service.get_bugs(
                    page=page,
                    page_size=self.config.batchSize,
                    modified_since=since,
                    timestamp_field=table_config.timestampField,
                )
            return fetch_bugs
        raise ValueError(f"Unsupported table: {table_config.tableName}")

    async def _process_item(self, table_name: str, item: Any) -> None:
        if table_name == "bugs":
            await self.bug_store.upsert(item)
            return
        raise ValueError(f"Unsupported table: {table_name}")

    def get_last_sync_time(self, table_name: str) -> datetime:
        checkpoint = self.state_store.get_checkpoint(_checkpoint_key(table_name))
        if checkpoint is None:
            return self._now() - DEFAULT_LOOKBACK
        return checkpoint

    def get_sync_history(self, table_name: Optional[str] = None, limit: int = 100) -> List[SyncRecord]:
        return self.state_store.get_sync_history(table_name=table_name, limit=limit)

    def get_status(self) -> Dict[str, Any]:
        table_status: Dict[str, Any] = {}
        for table_config in self.config.syncTables:
            checkpoint = self.state_store.get_checkpoint(_checkpoint_key(table_config.tableName))
            table_status[table_config.tableName] = {
                "enabled": table_config.enabled,
                "lastCheck": checkpoint.isoformat() if checkpoint else None,
            }
        return {
            "isRunning": self.is_running,
            "config": self.config.model_dump(mode="json"),
            "tableStatus": table_status,
        }


def _checkpoint_key(table_name: str) -> str:
    return f"incremental:{table_name}"
