"""
Verdrahtung der Sync-Komponenten.

Codec, Client und Services werden genau einmal gebaut und explizit an Puller
und Manager übergeben. Die FastAPI-App legt den Container in ``app.state`` ab.
"""

from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from bugsync import config
from bugsync.models.sync import (
    BugSyncConfig,
    IncrementalSyncConfig,
    SyncConfig,
    SyncManagerConfig,
    WebHookConfig,
)
from bugsync.services.bug_service import BugService
from bugsync.services.error_classifier import CrashReporter, ErrorClassifier
from bugsync.services.signature import SignatureCodec
from bugsync.services.stores import BugStore, InMemoryBugStore, SqlSyncStateStore, SyncStateStore
from bugsync.services.upstream_client import UpstreamClient
from bugsync.sync.bug_sync_manager import BugSyncManager
from bugsync.sync.incremental_sync import IncrementalSync
from bugsync.sync.polling_sync import PollingSync
from bugsync.sync.scheduler import TaskScheduler
from bugsync.sync.sync_manager import SyncManager
from bugsync.sync.webhook_sync import WebHookSync
from bugsync.utils.logger import infoLog
from bugsync.utils.time_utils import Clock, now_ms

MODULE_NAME = "Container"


class SyncContainer:
    def __init__(
        self,
        client: UpstreamClient,
        scheduler: TaskScheduler,
        bug_store: BugStore,
        state_store: SyncStateStore,
        sync_manager: SyncManager,
        bug_sync_manager: BugSyncManager,
    ):
        self.client = client
        self.scheduler = scheduler
        self.bug_store = bug_store
        self.state_store = state_store
        self.sync_manager = sync_manager
        self.bug_sync_manager = bug_sync_manager

    def start(self) -> None:
        self.sync_manager.start()
        self.bug_sync_manager.start()

    async def shutdown(self) -> None:
        self.sync_manager.stop()
        self.bug_sync_manager.stop()
        self.scheduler.cancel_all()
        await self.client.aclose()
        infoLog(MODULE_NAME, "Sync services shut down")


def build_container(
    session_factory: Callable[[], Session],
    bug_store: Optional[BugStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    reporter: Optional[CrashReporter] = None,
    clock: Clock = now_ms,
    scheduler: Optional[TaskScheduler] = None,
    sync_manager_config: Optional[SyncManagerConfig] = None,
    bug_sync_config: Optional[BugSyncConfig] = None,
    webhook_config: Optional[WebHookConfig] = None,
) -> SyncContainer:
    """Baut alle Sync-Komponenten; Fehler hier sind fatal für den Start der App."""
    sync_manager_config = sync_manager_config or SyncManagerConfig()
    bug_sync_config = bug_sync_config or BugSyncConfig()
    bug_store = bug_store or InMemoryBugStore()
    state_store = SqlSyncStateStore(session_factory)
    scheduler = scheduler or TaskScheduler()

    upstream_codec = SignatureCodec(config.UPSTREAM_SECRET_KEY, clock=clock)
    client = UpstreamClient(
        config.UPSTREAM_BASE_URL,
        config.UPSTREAM_API_KEY,
        upstream_codec,
        classifier=ErrorClassifier(reporter),
        transport=transport,
        clock=clock,
    )
    bug_service = BugService(client)

    # Jeder Manager besitzt eigene Puller, damit ein Strategiewechsel den anderen nicht stoppt
    sync_manager = SyncManager(
        sync_manager_config,
        PollingSync(SyncConfig(), bug_service, bug_store, state_store, scheduler, clock=clock),
        IncrementalSync(IncrementalSyncConfig(), bug_service, bug_store, state_store, scheduler, clock=clock),
        WebHookSync(webhook_config or WebHookConfig(), bug_store, clock=clock),
        scheduler,
        clock=clock,
    )

    bug_webhook_config = WebHookConfig(secretKey=bug_sync_config.webhook.secretKey)
    bug_sync_manager = BugSyncManager(
        bug_sync_config,
        PollingSync(
            SyncConfig(intervalMs=bug_sync_config.polling.intervalMs), bug_service, bug_store, state_store, scheduler,
            clock=clock,
        ),
        WebHookSync(bug_webhook_config, bug_store, clock=clock),
        scheduler,
        clock=clock,
    )

    infoLog(MODULE_NAME, "Sync services built", details={
        "strategy": sync_manager.current_strategy,
        "bugSyncStrategy": bug_sync_config.strategy,
        "upstream": config.UPSTREAM_BASE_URL,
    })
    return SyncContainer(client, scheduler, bug_store, state_store, sync_manager, bug_sync_manager)
