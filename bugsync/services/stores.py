"""
Kollaborateure für lokale Persistenz.

``BugStore`` speichert die gespiegelten Bug-Datensätze (außerhalb des Sync-Kerns,
hier nur als Schnittstelle plus In-Memory-Variante). ``SyncStateStore`` hält
Checkpoints und Lauf-Protokolle; die Standardimplementierung nutzt SQLAlchemy.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from bugsync import crud
from bugsync.models.sync import SyncRecord, SyncRecordStatus
from bugsync.utils.logger import debugLog

MODULE_NAME = "Stores"


@runtime_checkable
class BugStore(Protocol):
    async def upsert(self, bug: Dict[str, Any]) -> None:
        ...

    async def delete(self, bug_id: str) -> None:
        ...


@runtime_checkable
class SyncStateStore(Protocol):
    def get_checkpoint(self, key: str) -> Optional[datetime]:
        ...

    def set_checkpoint(self, key: str, when: datetime) -> None:
        ...

    def save_sync_record(self, record: SyncRecord) -> None:
        ...

    def get_sync_history(self, table_name: Optional[str] = None, limit: int = 100) -> List[SyncRecord]:
        ...


class InMemoryBugStore:
    """Hält gespiegelte Bugs im Speicher; letzter Schreiber gewinnt."""

    def __init__(self):
        self.bugs: Dict[str, Dict[str, Any]] = {}

    async def upsert(self, bug: Dict[str, Any]) -> None:
        if not isinstance(bug, dict) or bug.get("id") is None:
            raise ValueError("Bug payload requires an 'id'")
        self.bugs[str(bug["id"])] = bug
        debugLog(MODULE_NAME, f"Stored bug {bug['id']} locally")

    async def delete(self, bug_id: str) -> None:
        self.bugs.pop(str(bug_id), None)
        debugLog(MODULE_NAME, f"Removed bug {bug_id} locally")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSyncStateStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_checkpoint(self, key: str) -> Optional[datetime]:
        db = self.session_factory()
        try:
            checkpoint = crud.get_checkpoint(db, key)
            return _as_utc(checkpoint.last_sync_time) if checkpoint else None
        finally:
            db.close()

    def set_checkpoint(self, key: str, when: datetime) -> None:
        db = self.session_factory()
        try:
            crud.set_checkpoint(db, key, when)
        finally:
            db.close()

    def save_sync_record(self, record: SyncRecord) -> None:
        db = self.session_factory()
        try:
            crud.create_sync_record(
                db,
                record_id=record.id,
                table_name=record.tableName,
                last_sync_time=record.lastSyncTime,
                record_count=record.recordCount,
                status=record.status.value,
                error_message=record.error,
                failed_count=record.failedCount,
            )
        finally:
            db.close()

    def get_sync_history(self, table_name: Optional[str] = None, limit: int = 100) -> List[SyncRecord]:
        db = self.session_factory()
        try:
            rows = crud.get_sync_records(db, table_name=table_name, limit=limit)
            return [
                SyncRecord(
                    id=row.id,
                    tableName=row.table_name,
                    lastSyncTime=_as_utc(row.last_sync_time),
                    recordCount=row.record_count,
                    failedCount=row.failed_count,
                    status=SyncRecordStatus(row.status),
                    error=row.error_message,
                )
                for row in rows
            ]
        finally:
            db.close()
