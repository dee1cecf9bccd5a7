import asyncio

import pytest

from bugsync.models.sync import CheckpointPolicy, ExternalError, SyncConfig
from bugsync.services.error_classifier import UpstreamError
from bugsync.sync.polling_sync import PollingSync
from bugsync.sync.scheduler import TaskScheduler

from conftest import FakeBugService, make_bugs


class FlakyBugStore:
    """Lehnt die Bugs mit den angegebenen IDs ab."""

    def __init__(self, failing_ids=()):
        self.failing_ids = set(failing_ids)
        self.bugs = {}

    async def upsert(self, bug):
        if bug["id"] in self.failing_ids:
            raise ValueError(f"cannot store {bug['id']}")
        self.bugs[bug["id"]] = bug

    async def delete(self, bug_id):
        self.bugs.pop(bug_id, None)


def upstream_error(status=503):
    error = ExternalError(message="unavailable", status=status, code=f"HTTP_{status}")
    return UpstreamError(error, {"success": False, "error": "Primary system list bugs failed", "code": error.code})


def make_polling(bug_service, bug_store, state_store, scheduler, clock, **config):
    config.setdefault("batchSize", 2)
    config.setdefault("intervalMs", 1000)
    return PollingSync(SyncConfig(**config), bug_service, bug_store, state_store, scheduler, clock=clock)


def test_pagination_stops_after_short_page(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(2, 1), make_bugs(2, 3), make_bugs(1, 5)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock)

    result = asyncio.run(polling.run_once())

    assert [call["page"] for call in service.calls] == [1, 2, 3]
    assert all(call["page_size"] == 2 for call in service.calls)
    assert result.success is True
    assert result.syncedCount == 5
    assert result.failedCount == 0
    assert set(bug_store.bugs) == {"1", "2", "3", "4", "5"}
    assert state_store.get_checkpoint("polling:bugs") is not None


def test_empty_page_ends_paging(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(2, 1)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock)

    result = asyncio.run(polling.run_once())

    assert [call["page"] for call in service.calls] == [1, 2]
    assert result.syncedCount == 2


def test_item_failures_are_counted_and_do_not_abort(state_store, scheduler, clock):
    store = FlakyBugStore(failing_ids={"2"})
    service = FakeBugService([make_bugs(2, 1), make_bugs(1, 3)])
    polling = make_polling(service, store, state_store, scheduler, clock)

    result = asyncio.run(polling.run_once())

    assert result.syncedCount == 2
    assert result.failedCount == 1
    assert result.errors[0]["itemId"] == "2"
    assert set(store.bugs) == {"1", "3"}
    # optimistisch: Checkpoint wird trotzdem vorgerückt
    assert state_store.get_checkpoint("polling:bugs") is not None


def test_require_complete_keeps_checkpoint_on_item_failure(state_store, scheduler, clock):
    store = FlakyBugStore(failing_ids={"1"})
    service = FakeBugService([make_bugs(1, 1)])
    polling = make_polling(
        service, store, state_store, scheduler, clock, checkpointPolicy=CheckpointPolicy.REQUIRE_COMPLETE
    )

    asyncio.run(polling.run_once())

    assert state_store.get_checkpoint("polling:bugs") is None


def test_page_failure_stops_paging_and_marks_result(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(2, 1), upstream_error(), make_bugs(1, 5)])
    polling = make_polling(
        service, bug_store, state_store, scheduler, clock, checkpointPolicy=CheckpointPolicy.REQUIRE_COMPLETE
    )

    result = asyncio.run(polling.run_once())

    assert [call["page"] for call in service.calls] == [1, 2]
    assert result.success is False
    assert result.syncedCount == 2
    assert result.errors[0]["page"] == 2
    assert result.errors[0]["error"]["code"] == "HTTP_503"
    assert state_store.get_checkpoint("polling:bugs") is None


def test_unsupported_entity_does_not_block_others(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(1, 1)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock, enabledEntities=["users", "bugs"])

    result = asyncio.run(polling.run_once())

    assert result.success is False
    assert result.syncedCount == 1
    assert "Unsupported entity" in result.errors[0]["error"]


def test_start_runs_immediately_then_every_interval(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(1, 1)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock)
    results = []
    polling.add_listener(results.append)

    async def scenario():
        polling.start()
        await scheduler.advance(0)
        assert len(results) == 1
        await scheduler.advance(999)
        assert len(results) == 1
        await scheduler.advance(1)
        assert len(results) == 2

    asyncio.run(scenario())
    assert polling.get_status()["lastResult"]["syncedCount"] == 1


def test_stop_prevents_further_cycles(bug_store, state_store, scheduler, clock):
    service = FakeBugService([make_bugs(1, 1)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock)

    async def scenario():
        polling.start()
        await scheduler.advance(0)
        polling.stop()
        await scheduler.advance(10_000)

    asyncio.run(scenario())
    assert len(service.calls) == 1
    assert scheduler.active_count == 0
    assert polling.is_running is False


def test_double_start_keeps_one_interval_timer(bug_store, state_store):
    service = FakeBugService([make_bugs(1, 1)])

    async def scenario():
        scheduler = TaskScheduler()
        polling = PollingSync(SyncConfig(intervalMs=60_000, batchSize=2), service, bug_store, state_store, scheduler)
        polling.start()
        polling.start()
        active = scheduler.active_count
        await asyncio.sleep(0.05)
        polling.stop()
        return active, scheduler.active_count

    active, after_stop = asyncio.run(scenario())
    assert active == 1
    assert after_stop == 0
    assert len(service.calls) == 1


def test_result_of_stopped_run_is_discarded(bug_store, state_store, scheduler, clock):
    gate = {}

    class SlowBugService(FakeBugService):
        async def get_bugs(self, page=1, page_size=10, modified_since=None, timestamp_field=None):
            gate["polling"].stop()
            return await super().get_bugs(page, page_size, modified_since, timestamp_field)

    service = SlowBugService([make_bugs(2, 1), make_bugs(2, 3)])
    polling = make_polling(service, bug_store, state_store, scheduler, clock)
    gate["polling"] = polling
    results = []
    polling.add_listener(results.append)

    async def scenario():
        polling.start()
        await scheduler.advance(0)

    asyncio.run(scenario())
    assert results == []
    assert polling.last_result is None
    assert [call["page"] for call in service.calls] == [1]
