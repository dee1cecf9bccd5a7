import asyncio
from typing import Any, Dict, Optional

from bugsync.models.sync import BugSyncConfig, BugSyncStrategy, SyncResult, WebHookRequest, WebHookResponse
from bugsync.sync.polling_sync import PollingSync
from bugsync.sync.scheduler import TaskScheduler
from bugsync.sync.webhook_sync import WebHookSync
from bugsync.utils.logger import debugLog, infoLog, warnLog
from bugsync.utils.time_utils import Clock, ms_to_datetime, now_ms

MODULE_NAME = "BugSyncManager"

RESTART_DELAY_MS = 1000

_STATE_NAMES = {
    BugSyncStrategy.POLLING: "polling-only",
    BugSyncStrategy.WEBHOOK: "webhook-only",
    BugSyncStrategy.BOTH: "both",
}


class BugSyncManager:
    """
    Kombiniert Polling und WebHook für Bugs.

    Im Modus ``both`` pausiert ein erfolgreicher WebHook das Polling für die
    Cooldown-Zeit; danach (oder wenn der WebHook zu lange schweigt) läuft das
    Polling wieder an.
    """

    def __init__(
        self,
        config: BugSyncConfig,
        polling_sync: PollingSync,
        webhook_sync: WebHookSync,
        scheduler: TaskScheduler,
        clock: Clock = now_ms,
        restart_delay_ms: int = RESTART_DELAY_MS,
    ):
        self.config = config
        self.polling_sync = polling_sync
        self.webhook_sync = webhook_sync
        self.scheduler = scheduler
        self._clock = clock
        self.restart_delay_ms = restart_delay_ms
        self.is_running = False
        self.last_webhook_time: Optional[int] = None
        self._health_token: Optional[int] = None
        self._resume_token: Optional[int] = None

    @property
    def strategy(self) -> BugSyncStrategy:
        return self.config.strategy

    @property
    def state(self) -> str:
        if not self.is_running:
            return "stopped"
        return _STATE_NAMES[self.strategy]

    @property
    def polling_enabled(self) -> bool:
        return self.config.polling.enabled and self.strategy in (BugSyncStrategy.POLLING, BugSyncStrategy.BOTH)

    @property
    def webhook_enabled(self) -> bool:
        return self.config.webhook.enabled and self.strategy in (BugSyncStrategy.WEBHOOK, BugSyncStrategy.BOTH)

    def start(self) -> None:
        if self.is_running:
            warnLog(MODULE_NAME, "Bug sync manager is already running")
            return

        self.is_running = True
        infoLog(MODULE_NAME, f"Starting bug sync with strategy: {self.strategy.value}")

        if self.webhook_enabled:
            infoLog(MODULE_NAME, "WebHook receiver armed")
        if self.polling_enabled:
            self._ensure_polling()
        if self.webhook_enabled:
            self._health_token = self.scheduler.call_every(
                self.config.healthCheckIntervalMs, self.perform_health_check, name="bug-sync-health"
            )

    def stop(self) -> None:
        self.scheduler.cancel(self._health_token)
        self._health_token = None
        self._cancel_resume()
        self.polling_sync.stop()
        was_running = self.is_running
        self.is_running = False
        if was_running:
            infoLog(MODULE_NAME, "Bug sync manager stopped")

    async def restart(self) -> None:
        infoLog(MODULE_NAME, "Restarting bug sync manager")
        self.stop()
        await asyncio.sleep(self.restart_delay_ms / 1000)
        self.start()

    async def handle_webhook(self, request: WebHookRequest) -> WebHookResponse:
        if not self.webhook_enabled:
            warnLog(MODULE_NAME, "WebHook received but webhook sync is not enabled")
            return WebHookResponse(statusCode=503, body={"error": "WebHook sync is not enabled"})

        response = await self.webhook_sync.handle_webhook(request)
        if response.accepted:
            self._on_webhook_success()
        elif response.failed:
            self._on_webhook_failure(response.error)
        return response

    def _on_webhook_success(self) -> None:
        self.last_webhook_time = self._clock()
        if not self.is_running or self.strategy != BugSyncStrategy.BOTH or not self.polling_enabled:
            return

        if self.polling_sync.is_running:
            infoLog(MODULE_NAME, f"WebHook received, pausing polling for {self.config.cooldownMs}ms")
            self.polling_sync.stop()

        self._cancel_resume()
        self._resume_token = self.scheduler.call_later(
            self.config.cooldownMs, self._resume_polling, name="bug-sync-resume"
        )

    def _on_webhook_failure(self, error: Optional[str]) -> None:
        if not self.is_running or self.strategy != BugSyncStrategy.BOTH:
            return
        if not self.config.fallbackToPolling or not self.polling_enabled:
            return
        warnLog(MODULE_NAME, "WebHook processing failed, falling back to polling", details={"error": error})
        self._cancel_resume()
        self._ensure_polling()

    async def _resume_polling(self) -> None:
        self._resume_token = None
        if self.is_running and self.polling_enabled:
            infoLog(MODULE_NAME, "Cooldown elapsed, resuming polling")
            self._ensure_polling()

    def _ensure_polling(self) -> None:
        if not self.polling_sync.is_running:
            self.polling_sync.start()

    def _cancel_resume(self) -> None:
        self.scheduler.cancel(self._resume_token)
        self._resume_token = None

    def is_webhook_healthy(self) -> bool:
        if self.last_webhook_time is None:
            return False
        return self._clock() - self.last_webhook_time < self.config.webhookTimeoutMs

    async def perform_health_check(self) -> None:
        if not self.is_running:
            return
        if self.is_webhook_healthy():
            debugLog(MODULE_NAME, "WebHook healthy")
            return

        warnLog(MODULE_NAME, "WebHook unhealthy", details={
            "lastReceived": self.last_webhook_time, "timeoutMs": self.config.webhookTimeoutMs
        })
        # Jede ungesunde Messung stellt das Polling erneut sicher
        if self.config.fallbackToPolling and self.polling_enabled:
            self._cancel_resume()
            self._ensure_polling()

    async def trigger_sync(self) -> SyncResult:
        infoLog(MODULE_NAME, "Manual bug sync triggered")
        return await self.polling_sync.run_once()

    def get_status(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "state": self.state,
            "strategy": self.strategy.value,
            "polling": {
                "enabled": self.polling_enabled,
                "interval": self.config.polling.intervalMs,
                "status": self.polling_sync.get_status(),
                "resumePending": self.scheduler.is_active(self._resume_token),
            },
            "webhook": {
                "enabled": self.webhook_enabled,
                "lastReceived": _iso(self.last_webhook_time),
                "isHealthy": self.is_webhook_healthy(),
                "timeout": self.config.webhookTimeoutMs,
            },
        }

    def get_health(self) -> Dict[str, Any]:
        webhook_healthy = self.is_webhook_healthy()
        healthy = self.is_running and (webhook_healthy or self.polling_enabled)
        return {
            "isHealthy": healthy,
            "isRunning": self.is_running,
            "strategy": self.strategy.value,
            "webhookHealthy": webhook_healthy,
            "pollingActive": self.polling_sync.is_running,
        }


def _iso(ms: Optional[int]) -> Optional[str]:
    value = ms_to_datetime(ms)
    return value.isoformat() if value else None
