from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ..config import SQLALCHEMY_DATABASE_URL
from ..utils.logger import infoLog, errorLog
from ..models.sync_models import Base

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_db_and_tables():
    try:
        Base.metadata.create_all(bind=engine)
        infoLog("db.database", "Sync state tables ensured.", {"db_url": SQLALCHEMY_DATABASE_URL})
    except Exception as e:
        errorLog("db.database", f"Failed to create sync state tables: {str(e)}", {"db_url": SQLALCHEMY_DATABASE_URL})
        raise
