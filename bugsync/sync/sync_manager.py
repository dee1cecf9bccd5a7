import asyncio
from typing import Any, Dict, List, Optional

from bugsync.models.sync import (
    StrategyStatusTable,
    SyncManagerConfig,
    SyncRecord,
    SyncResult,
    SyncStatus,
    SyncStrategy,
    WebHookRequest,
    WebHookResponse,
)
from bugsync.sync.incremental_sync import IncrementalSync
from bugsync.sync.polling_sync import PollingSync
from bugsync.sync.scheduler import TaskScheduler
from bugsync.sync.webhook_sync import WebHookSync
from bugsync.utils.logger import debugLog, infoLog, warnLog
from bugsync.utils.time_utils import Clock, ms_to_datetime, now_ms

MODULE_NAME = "SyncManager"

RESTART_DELAY_MS = 1000

PULL_STRATEGIES = (SyncStrategy.POLLING, SyncStrategy.INCREMENTAL)


class SyncManager:
    """
    Verwaltet die vier Sync-Strategien (polling, webhook, incremental, hybrid).

    Hält für jede Strategie einen ``SyncStatus`` und wechselt per Health-Check
    automatisch auf die konfigurierte Fallback-Strategie, wenn die aktuelle
    Strategie ungesund ist.
    """

    def __init__(
        self,
        config: SyncManagerConfig,
        polling_sync: PollingSync,
        incremental_sync: IncrementalSync,
        webhook_sync: WebHookSync,
        scheduler: TaskScheduler,
        clock: Clock = now_ms,
        restart_delay_ms: int = RESTART_DELAY_MS,
    ):
        self.config = config
        self.polling_sync = polling_sync
        self.incremental_sync = incremental_sync
        self.webhook_sync = webhook_sync
        self.scheduler = scheduler
        self._clock = clock
        self.restart_delay_ms = restart_delay_ms
        self.current_strategy = config.strategy
        self.status = StrategyStatusTable()
        self.is_running = False
        self.last_webhook_time: Optional[int] = None
        self._health_token: Optional[int] = None

        polling_sync.add_listener(lambda result: self._record_pull_result(SyncStrategy.POLLING, result))
        incremental_sync.add_listener(lambda result: self._record_pull_result(SyncStrategy.INCREMENTAL, result))

    # --- Lebenszyklus ---

    def start(self) -> None:
        if self.is_running:
            warnLog(MODULE_NAME, "Sync manager is already running")
            return

        self.is_running = True
        infoLog(MODULE_NAME, f"Starting sync manager with strategy: {self.current_strategy.value}")
        self._start_strategy(self.current_strategy)

        if self.config.enableFailover:
            self._health_token = self.scheduler.call_every(
                self.config.healthCheckIntervalMs, self.perform_health_check, name="sync-health"
            )

    def stop(self) -> None:
        self.scheduler.cancel(self._health_token)
        self._health_token = None
        if self.is_running:
            self._stop_strategy(self.current_strategy)
            infoLog(MODULE_NAME, "Sync manager stopped")
        self.is_running = False

    async def restart(self) -> None:
        infoLog(MODULE_NAME, "Restarting sync manager")
        self.stop()
        await asyncio.sleep(self.restart_delay_ms / 1000)
        self.start()

    def switch_strategy(self, new_strategy: SyncStrategy) -> bool:
        new_strategy = SyncStrategy(new_strategy)
        if new_strategy == self.current_strategy:
            debugLog(MODULE_NAME, f"Strategy {new_strategy.value} is already active")
            return False

        infoLog(MODULE_NAME, f"Switching sync strategy from {self.current_strategy.value} to {new_strategy.value}")
        if self.is_running:
            self._stop_strategy(self.current_strategy)
        self.current_strategy = new_strategy
        if self.is_running:
            self._start_strategy(new_strategy)
        return True

    def _start_strategy(self, strategy: SyncStrategy) -> None:
        if strategy in (SyncStrategy.POLLING, SyncStrategy.HYBRID):
            self.polling_sync.start()
        if strategy in (SyncStrategy.INCREMENTAL, SyncStrategy.HYBRID):
            self.incremental_sync.start()
        if strategy in (SyncStrategy.WEBHOOK, SyncStrategy.HYBRID):
            # Das Scharfschalten zählt als Empfang; der Timeout wirkt als Schonfrist
            self.last_webhook_time = self._clock()
            infoLog(MODULE_NAME, "WebHook receiver armed")

        self._update_status(strategy, isHealthy=True, failureCount=0)
        if strategy == SyncStrategy.WEBHOOK:
            self._refresh_webhook_status()

    def _stop_strategy(self, strategy: SyncStrategy) -> None:
        if strategy in (SyncStrategy.POLLING, SyncStrategy.HYBRID):
            self.polling_sync.stop()
        if strategy in (SyncStrategy.INCREMENTAL, SyncStrategy.HYBRID):
            self.incremental_sync.stop()
        self._update_status(strategy, isHealthy=False)

    # --- Status-Tabelle ---

    def _update_status(self, strategy: SyncStrategy, **changes: Any) -> SyncStatus:
        updated = self.status.get(strategy).model_copy(update=changes)
        self.status.replace(strategy, updated)
        return updated

    def _record_pull_result(self, source: SyncStrategy, result: SyncResult) -> None:
        owners = [source]
        if self.current_strategy == SyncStrategy.HYBRID:
            owners.append(SyncStrategy.HYBRID)
        for owner in owners:
            self._apply_run(owner, result.success, result.durationMs, result.lastSyncTime)

    def _apply_run(self, strategy: SyncStrategy, success: bool, duration_ms: int, finished_at) -> None:
        current = self.status.get(strategy)
        total_runs = current.totalRuns + 1
        successful_runs = current.successfulRuns + (1 if success else 0)
        avg = current.performance.avgResponseTime + (duration_ms - current.performance.avgResponseTime) / total_runs
        performance = current.performance.model_copy(update={
            "avgResponseTime": avg,
            "successRate": successful_runs / total_runs * 100,
        })

        changes: Dict[str, Any] = {
            "totalRuns": total_runs,
            "successfulRuns": successful_runs,
            "performance": performance,
        }
        if success:
            changes.update(lastSuccessTime=finished_at, failureCount=0, isHealthy=True)
        else:
            failure_count = current.failureCount + 1
            changes["failureCount"] = failure_count
            if failure_count >= self.config.unhealthyAfterFailures:
                changes["isHealthy"] = False
                warnLog(MODULE_NAME, f"Strategy {strategy.value} marked unhealthy after {failure_count} failed runs")
        self._update_status(strategy, **changes)

    def is_webhook_healthy(self) -> bool:
        if self.last_webhook_time is None:
            return False
        if self.status.webhook.failureCount >= self.config.unhealthyAfterFailures:
            return False
        return self._clock() - self.last_webhook_time < self.config.webhookTimeoutMs

    def _refresh_webhook_status(self) -> None:
        self._update_status(SyncStrategy.WEBHOOK, isHealthy=self.is_webhook_healthy())

    # --- WebHook ---

    async def handle_webhook(self, request: WebHookRequest) -> WebHookResponse:
        started = self._clock()
        response = await self.webhook_sync.handle_webhook(request)

        if response.accepted:
            self.last_webhook_time = self._clock()
            self._apply_run(
                SyncStrategy.WEBHOOK, True, self.last_webhook_time - started, ms_to_datetime(self.last_webhook_time)
            )
        elif response.failed:
            self._apply_run(SyncStrategy.WEBHOOK, False, self._clock() - started, None)
        self._refresh_webhook_status()
        return response

    # --- Health-Check ---

    async def perform_health_check(self) -> None:
        if not self.is_running:
            return

        self._refresh_webhook_status()
        status = self.status.get(self.current_strategy)
        if status.isHealthy:
            debugLog(MODULE_NAME, f"Strategy {self.current_strategy.value} healthy")
            return

        warnLog(MODULE_NAME, f"Strategy {self.current_strategy.value} unhealthy", details={
            "failureCount": status.failureCount, "lastSuccessTime": status.lastSuccessTime
        })
        fallback = self.config.fallbackStrategy
        if fallback is not None and fallback != self.current_strategy:
            infoLog(MODULE_NAME, f"Failing over to {fallback.value}")
            self.switch_strategy(fallback)

    # --- Abfragen ---

    async def trigger_sync(self) -> Dict[str, Any]:
        strategy = self.current_strategy
        infoLog(MODULE_NAME, f"Manual sync triggered for strategy: {strategy.value}")

        if strategy in PULL_STRATEGIES:
            return {"strategy": strategy.value, "message": f"{strategy.value} sync runs in the background"}
        if strategy == SyncStrategy.WEBHOOK:
            return {"strategy": strategy.value, "message": "webhook sync waits for pushes from the primary system"}

        polling_result = await self.polling_sync.run_once()
        incremental_result = await self.incremental_sync.run_once()
        return {
            "strategy": strategy.value,
            "message": "hybrid sync ran one polling and one incremental cycle",
            "polling": polling_result.model_dump(mode="json") if polling_result else None,
            "incremental": incremental_result.model_dump(mode="json") if incremental_result else None,
        }

    def get_sync_status(self) -> Dict[str, Any]:
        self._refresh_webhook_status()
        return {
            "isRunning": self.is_running,
            "currentStrategy": self.current_strategy.value,
            "fallbackStrategy": self.config.fallbackStrategy.value if self.config.fallbackStrategy else None,
            "strategies": {strategy.value: status.model_dump(mode="json") for strategy, status in self.status.items()},
            "polling": self.polling_sync.get_status(),
            "incremental": self.incremental_sync.get_status(),
            "webhook": {
                "lastReceived": _iso(self.last_webhook_time),
                "isHealthy": self.status.webhook.isHealthy,
                "timeout": self.config.webhookTimeoutMs,
            },
        }

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            strategy.value: {
                "avgResponseTime": status.performance.avgResponseTime,
                "successRate": status.performance.successRate,
                "failureCount": status.failureCount,
                "totalRuns": status.totalRuns,
            }
            for strategy, status in self.status.items()
        }

    def get_sync_history(self, table_name: Optional[str] = None, limit: int = 100) -> List[SyncRecord]:
        return self.incremental_sync.get_sync_history(table_name=table_name, limit=limit)

    def get_health(self) -> Dict[str, Any]:
        self._refresh_webhook_status()
        status = self.status.get(self.current_strategy)
        return {
            "isHealthy": self.is_running and status.isHealthy,
            "isRunning": self.is_running,
            "currentStrategy": self.current_strategy.value,
            "failureCount": status.failureCount,
        }


def _iso(ms: Optional[int]) -> Optional[str]:
    value = ms_to_datetime(ms)
    return value.isoformat() if value else None
