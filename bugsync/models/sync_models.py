from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class SyncCheckpoint(Base):
    """
    Letzter erfolgreicher Synchronisationszeitpunkt pro Entität bzw. Tabelle.
    """
    __tablename__ = "sync_checkpoints"

    key = Column(String, primary_key=True, index=True)  # z.B. "polling:bugs", "incremental:bugs"
    last_sync_time = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SyncCheckpoint(key={self.key}, last_sync_time={self.last_sync_time})>"


class SyncRecordLog(Base):
    """
    Protokoll eines Synchronisationslaufs einer Tabelle (Audit-Zwecke).
    """
    __tablename__ = "sync_records"

    id = Column(String, primary_key=True, index=True)
    table_name = Column(String, nullable=False, index=True)
    last_sync_time = Column(DateTime, nullable=False)
    record_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)  # fehlgeschlagene Items
    status = Column(String, nullable=False)  # success, failed, running
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
