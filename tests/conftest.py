import pytest
import sys
import os

# Add the project root to sys.path to allow imports from 'bugsync'
# Assumes conftest.py is in <project>/tests/
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, PROJECT_ROOT)
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
import itertools

from main import app
from bugsync.models.sync import WebHookRequest
from bugsync.models.sync_models import Base
from bugsync.services.stores import InMemoryBugStore, SqlSyncStateStore

START_MS = 1_700_000_000_000
SECRET = "test-secret"


class FakeClock:
    """Manuelle Uhr in Millisekunden."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now


class ManualScheduler:
    """
    Scheduler mit simulierter Zeit: Timer feuern nur in ``advance``.
    Gleiche Schnittstelle wie TaskScheduler.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._timers = {}
        self._tokens = itertools.count(1)

    @property
    def active_count(self) -> int:
        return len(self._timers)

    def is_active(self, token) -> bool:
        return token is not None and token in self._timers

    def names(self):
        return sorted(timer["name"] for timer in self._timers.values())

    def call_later(self, delay_ms, callback, name="timer"):
        token = next(self._tokens)
        self._timers[token] = {"due": self.clock.now + delay_ms, "interval": None, "callback": callback, "name": name}
        return token

    def call_every(self, interval_ms, callback, run_immediately=False, name="interval"):
        token = next(self._tokens)
        due = self.clock.now if run_immediately else self.clock.now + interval_ms
        self._timers[token] = {"due": due, "interval": interval_ms, "callback": callback, "name": name}
        return token

    def cancel(self, token) -> bool:
        if token is None:
            return False
        return self._timers.pop(token, None) is not None

    def cancel_all(self) -> None:
        self._timers.clear()

    async def advance(self, ms: int = 0) -> None:
        target = self.clock.now + ms
        while True:
            due_timers = [(timer["due"], token) for token, timer in self._timers.items() if timer["due"] <= target]
            if not due_timers:
                break
            due, token = min(due_timers)
            timer = self._timers[token]
            self.clock.now = max(self.clock.now, due)
            if timer["interval"] is None:
                del self._timers[token]
            else:
                timer["due"] = due + timer["interval"]
            await timer["callback"]()
        self.clock.now = target


class FakeBugService:
    """
    Liefert vorbereitete Seiten für get_bugs. Ein Exception-Objekt an Stelle
    einer Seite wird beim Abruf dieser Seite geworfen.
    """

    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.calls = []

    async def get_bugs(self, page=1, page_size=10, modified_since=None, timestamp_field=None):
        self.calls.append({
            "page": page,
            "page_size": page_size,
            "modified_since": modified_since,
            "timestamp_field": timestamp_field,
        })
        if page > len(self.pages):
            return {"items": []}
        result = self.pages[page - 1]
        if isinstance(result, Exception):
            raise result
        return {"items": result}


def make_bugs(count: int, start: int = 1):
    return [{"id": str(i), "title": f"Bug {i}"} for i in range(start, start + count)]


@pytest.fixture(scope="function")
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def state_store(session_factory):
    return SqlSyncStateStore(session_factory)


@pytest.fixture(scope="function")
def bug_store():
    return InMemoryBugStore()


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture(scope="function")
def client():
    """TestClient ohne Lifespan; Tests legen ihren Sync-Container selbst in app.state ab."""
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()
    if hasattr(app.state, "sync_container"):
        del app.state.sync_container


def signed_webhook_request(codec, body, path="/api/v1/sync/webhook", timestamp=None, method="POST"):
    """Baut einen WebHookRequest mit gültiger Signatur über (method, path, timestamp, body)."""
    timestamp = str(codec._clock() if timestamp is None else timestamp)
    signature = codec.sign(codec.context(method, path, timestamp, body))
    return WebHookRequest(
        method=method,
        path=path,
        headers={"X-Timestamp": timestamp, "X-Signature": signature, "x-api-key": "api-key-1"},
        body=body,
    )


def bug_event(event_type="bug.updated", action="updated", entity_type="bug", entity_id="42", data=None):
    return {
        "eventType": event_type,
        "entityType": entity_type,
        "entityId": entity_id,
        "action": action,
        "data": data if data is not None else {"title": "Crash on save"},
        "timestamp": "2024-05-01T12:00:00Z",
    }
