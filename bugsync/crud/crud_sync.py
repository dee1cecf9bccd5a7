from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime, timezone

from bugsync.models.sync_models import SyncCheckpoint, SyncRecordLog
from bugsync.utils.logger import debugLog, errorLog

MODULE_NAME = "CrudSync"


def _naive_utc(value: datetime) -> datetime:
    # SQLite speichert keine Zeitzonen; alles wird als naive UTC abgelegt
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# SyncCheckpoint CRUD Operations
def get_checkpoint(db: Session, key: str) -> Optional[SyncCheckpoint]:
    """Ruft den Checkpoint für einen Schlüssel ab."""
    try:
        return db.query(SyncCheckpoint).filter(SyncCheckpoint.key == key).first()
    except Exception as e:
        errorLog(MODULE_NAME, "Error retrieving checkpoint", details={"key": key, "error": str(e)})
        raise


def set_checkpoint(db: Session, key: str, last_sync_time: datetime) -> SyncCheckpoint:
    """Legt den Checkpoint an oder schiebt ihn auf den neuen Zeitpunkt."""
    try:
        checkpoint = db.query(SyncCheckpoint).filter(SyncCheckpoint.key == key).first()
        if checkpoint is None:
            checkpoint = SyncCheckpoint(key=key, last_sync_time=_naive_utc(last_sync_time))
            db.add(checkpoint)
        else:
            checkpoint.last_sync_time = _naive_utc(last_sync_time)
        db.commit()
        db.refresh(checkpoint)
        debugLog(MODULE_NAME, f"Checkpoint {key} set", details={"last_sync_time": checkpoint.last_sync_time})
        return checkpoint
    except Exception as e:
        db.rollback()
        errorLog(MODULE_NAME, "Error setting checkpoint", details={"key": key, "error": str(e)})
        raise


# SyncRecord CRUD Operations
def create_sync_record(
    db: Session,
    record_id: str,
    table_name: str,
    last_sync_time: datetime,
    record_count: int,
    status: str,
    error_message: Optional[str] = None,
    failed_count: int = 0
) -> SyncRecordLog:
    """Speichert das Protokoll eines Synchronisationslaufs."""
    record = SyncRecordLog(
        id=record_id,
        table_name=table_name,
        last_sync_time=_naive_utc(last_sync_time),
        record_count=record_count,
        status=status,
        error_message=error_message,
        failed_count=failed_count
    )

    try:
        db.add(record)
        db.commit()
        db.refresh(record)
        debugLog(MODULE_NAME, f"Created sync record {record.id}", details={
            "table_name": table_name, "status": status, "record_count": record_count,
            "failed_count": failed_count
        })
        return record
    except Exception as e:
        db.rollback()
        errorLog(MODULE_NAME, "Error creating sync record", details={
            "table_name": table_name, "error": str(e)
        })
        raise


def get_sync_records(
    db: Session,
    table_name: Optional[str] = None,
    limit: int = 100
) -> List[SyncRecordLog]:
    """Ruft die jüngsten Sync-Protokolle ab, optional gefiltert nach Tabelle."""
    try:
        query = db.query(SyncRecordLog)
        if table_name:
            query = query.filter(SyncRecordLog.table_name == table_name)

        records = query.order_by(SyncRecordLog.created_at.desc(), SyncRecordLog.last_sync_time.desc()).limit(limit).all()
        debugLog(MODULE_NAME, f"Retrieved {len(records)} sync records", details={"table_name": table_name})
        return records
    except Exception as e:
        errorLog(MODULE_NAME, "Error retrieving sync records", details={
            "table_name": table_name, "error": str(e)
        })
        raise
