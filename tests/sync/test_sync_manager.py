import asyncio

import pytest

from bugsync.models.sync import (
    IncrementalSyncConfig,
    SyncConfig,
    SyncManagerConfig,
    SyncStrategy,
    WebHookConfig,
)
from bugsync.sync.incremental_sync import IncrementalSync
from bugsync.sync.polling_sync import PollingSync
from bugsync.sync.sync_manager import SyncManager
from bugsync.sync.webhook_sync import WebHookSync

from conftest import SECRET, FakeBugService, bug_event, make_bugs, signed_webhook_request


def build_manager(bug_store, state_store, scheduler, clock, pages=None, **overrides):
    settings = {
        "strategy": SyncStrategy.POLLING,
        "fallbackStrategy": SyncStrategy.INCREMENTAL,
        "enableFailover": True,
        "healthCheckIntervalMs": 60_000,
        "webhookTimeoutMs": 300_000,
        "unhealthyAfterFailures": 2,
    }
    settings.update(overrides)
    service = FakeBugService(pages if pages is not None else [make_bugs(1, 1)])
    polling = PollingSync(SyncConfig(intervalMs=10_000, batchSize=10), service, bug_store, state_store, scheduler, clock=clock)
    incremental = IncrementalSync(
        IncrementalSyncConfig(checkIntervalMs=30_000, batchSize=10), service, bug_store, state_store, scheduler, clock=clock
    )
    webhook = WebHookSync(WebHookConfig(secretKey=SECRET), bug_store, clock=clock)
    manager = SyncManager(
        SyncManagerConfig(**settings), polling, incremental, webhook, scheduler, clock=clock, restart_delay_ms=0
    )
    return manager, service


def test_status_table_holds_all_strategies_before_start(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock)

    strategies = manager.get_sync_status()["strategies"]

    assert set(strategies) == {"polling", "webhook", "incremental", "hybrid"}
    assert all(entry["isHealthy"] is False for entry in strategies.values())


def test_start_runs_configured_strategy_and_health_check(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock)

    async def scenario():
        manager.start()
        manager.start()
        await scheduler.advance(0)

    asyncio.run(scenario())
    assert manager.polling_sync.is_running is True
    assert manager.incremental_sync.is_running is False
    assert scheduler.names() == ["polling-sync", "sync-health"]
    polling_status = manager.status.polling
    assert polling_status.isHealthy is True
    assert polling_status.totalRuns == 1
    assert polling_status.lastSuccessTime is not None
    assert polling_status.performance.successRate == 100.0


def test_switch_strategy_is_noop_for_current(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock)
    manager.start()

    assert manager.switch_strategy(SyncStrategy.POLLING) is False
    assert manager.switch_strategy(SyncStrategy.INCREMENTAL) is True
    assert manager.current_strategy == SyncStrategy.INCREMENTAL
    assert manager.polling_sync.is_running is False
    assert manager.incremental_sync.is_running is True


def test_hybrid_runs_both_pullers(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock, strategy=SyncStrategy.HYBRID)

    async def scenario():
        manager.start()
        await scheduler.advance(0)

    asyncio.run(scenario())
    assert manager.polling_sync.is_running is True
    assert manager.incremental_sync.is_running is True
    assert manager.status.hybrid.totalRuns == 2
    assert manager.status.hybrid.isHealthy is True


def test_failover_switches_to_fallback_exactly_once(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock)
    switches = []
    original_switch = manager.switch_strategy

    def recording_switch(strategy):
        switches.append(strategy)
        return original_switch(strategy)

    manager.switch_strategy = recording_switch

    async def scenario():
        manager.start()
        await scheduler.advance(0)
        manager.status.replace(SyncStrategy.POLLING, manager.status.polling.model_copy(update={"isHealthy": False}))
        await manager.perform_health_check()
        assert manager.current_strategy == SyncStrategy.INCREMENTAL

        manager.status.replace(
            SyncStrategy.INCREMENTAL, manager.status.incremental.model_copy(update={"isHealthy": False})
        )
        await manager.perform_health_check()
        await manager.perform_health_check()

    asyncio.run(scenario())
    assert switches == [SyncStrategy.INCREMENTAL]
    assert manager.current_strategy == SyncStrategy.INCREMENTAL


def test_consecutive_failed_cycles_trigger_failover(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock, pages=[RuntimeError("upstream down")])

    async def scenario():
        manager.start()
        await scheduler.advance(0)
        assert manager.status.polling.failureCount == 1
        assert manager.status.polling.isHealthy is True

        await scheduler.advance(10_000)
        assert manager.status.polling.failureCount == 2
        assert manager.status.polling.isHealthy is False

        await scheduler.advance(50_000)

    asyncio.run(scenario())
    assert manager.current_strategy == SyncStrategy.INCREMENTAL
    assert manager.polling_sync.is_running is False
    assert manager.status.polling.performance.successRate == 0.0


def test_no_failover_without_fallback(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock, fallbackStrategy=None)

    async def scenario():
        manager.start()
        manager.status.replace(SyncStrategy.POLLING, manager.status.polling.model_copy(update={"isHealthy": False}))
        await manager.perform_health_check()

    asyncio.run(scenario())
    assert manager.current_strategy == SyncStrategy.POLLING


def test_webhook_health_is_derived_from_last_push(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(
        bug_store, state_store, scheduler, clock, strategy=SyncStrategy.WEBHOOK, fallbackStrategy=SyncStrategy.POLLING
    )

    async def scenario():
        manager.start()
        assert manager.status.webhook.isHealthy is True

        await scheduler.advance(240_000)
        response = await manager.handle_webhook(signed_webhook_request(manager.webhook_sync.codec, bug_event()))
        assert response.statusCode == 200
        await scheduler.advance(240_000)
        assert manager.current_strategy == SyncStrategy.WEBHOOK

        await scheduler.advance(120_000)

    asyncio.run(scenario())
    assert manager.status.webhook.isHealthy is False
    assert manager.current_strategy == SyncStrategy.POLLING


def test_trigger_sync_by_strategy(bug_store, state_store, scheduler, clock):
    manager, service = build_manager(bug_store, state_store, scheduler, clock)

    advisory = asyncio.run(manager.trigger_sync())
    assert advisory["strategy"] == "polling"
    assert service.calls == []

    manager.switch_strategy(SyncStrategy.HYBRID)
    hybrid = asyncio.run(manager.trigger_sync())
    assert hybrid["polling"]["syncedCount"] == 1
    assert hybrid["incremental"]["syncedCount"] == 1


def test_metrics_and_history(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock, strategy=SyncStrategy.INCREMENTAL)

    async def scenario():
        manager.start()
        await scheduler.advance(0)

    asyncio.run(scenario())
    metrics = manager.get_performance_metrics()
    assert metrics["incremental"]["totalRuns"] == 1
    assert metrics["incremental"]["successRate"] == 100.0
    assert metrics["polling"]["totalRuns"] == 0
    history = manager.get_sync_history()
    assert len(history) == 1
    assert history[0].tableName == "bugs"


def test_stop_and_restart(bug_store, state_store, scheduler, clock):
    manager, _ = build_manager(bug_store, state_store, scheduler, clock)

    async def scenario():
        manager.start()
        manager.stop()
        assert scheduler.active_count == 0
        assert manager.get_health()["isHealthy"] is False
        await manager.restart()

    asyncio.run(scenario())
    assert manager.is_running is True
    assert manager.polling_sync.is_running is True
    assert manager.get_health()["isHealthy"] is True
