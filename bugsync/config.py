import os
from dotenv import load_dotenv

# Basisverzeichnis des Backend-Projekts
BACKEND_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Lade Umgebungsvariablen aus der .env-Datei im Backend-Root-Verzeichnis
dotenv_path = os.path.join(BACKEND_BASE_DIR, ".env")
load_dotenv(dotenv_path)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Datenbank für Sync-Checkpoints und Sync-Protokolle
SYNC_DB_NAME = os.getenv("SYNC_DB_NAME", "sync_state.db")

# Für lokale Entwicklung: verwende HOST_DB_PATH falls gesetzt, sonst Standard-Pfad
DB_DIR = os.getenv("HOST_DB_PATH", os.path.join(BACKEND_BASE_DIR, "data", "db"))
os.makedirs(DB_DIR, exist_ok=True)

SQLALCHEMY_DATABASE_URL = f"sqlite:///{os.path.join(DB_DIR, SYNC_DB_NAME)}"

# Primärsystem (Upstream), dessen Bug-Daten gespiegelt werden
UPSTREAM_BASE_URL = os.getenv("UPSTREAM_BASE_URL", "http://localhost:8080/api")
UPSTREAM_API_KEY = os.getenv("UPSTREAM_API_KEY", "")
UPSTREAM_SECRET_KEY = os.getenv("UPSTREAM_SECRET_KEY", "")
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10"))

# WebHook-Einstellungen
WEBHOOK_SECRET_KEY = os.getenv("WEBHOOK_SECRET_KEY", UPSTREAM_SECRET_KEY)
WEBHOOK_ALLOWED_EVENTS = [
    event.strip()
    for event in os.getenv("WEBHOOK_ALLOWED_EVENTS", "bug.created,bug.updated,bug.deleted").split(",")
    if event.strip()
]
SIGNATURE_WINDOW_MS = int(os.getenv("SIGNATURE_WINDOW_MS", str(5 * 60 * 1000)))
WEBHOOK_HEALTH_TIMEOUT_MS = int(os.getenv("WEBHOOK_HEALTH_TIMEOUT_MS", str(5 * 60 * 1000)))
WEBHOOK_COOLDOWN_MS = int(os.getenv("WEBHOOK_COOLDOWN_MS", str(30 * 1000)))

# Polling / inkrementelle Synchronisation
POLLING_INTERVAL_MS = int(os.getenv("POLLING_INTERVAL_MS", str(5 * 60 * 1000)))
POLLING_BATCH_SIZE = int(os.getenv("POLLING_BATCH_SIZE", "100"))
INCREMENTAL_INTERVAL_MS = int(os.getenv("INCREMENTAL_INTERVAL_MS", str(30 * 1000)))
INCREMENTAL_BATCH_SIZE = int(os.getenv("INCREMENTAL_BATCH_SIZE", "50"))
SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "3"))
CHECKPOINT_POLICY = os.getenv("CHECKPOINT_POLICY", "optimistic")

# Strategie-Auswahl und Failover
SYNC_STRATEGY = os.getenv("SYNC_STRATEGY", "hybrid")
SYNC_FALLBACK_STRATEGY = os.getenv("SYNC_FALLBACK_STRATEGY", "polling") or None
SYNC_ENABLE_FAILOVER = _env_bool("SYNC_ENABLE_FAILOVER", "true")
HEALTH_CHECK_INTERVAL_MS = int(os.getenv("HEALTH_CHECK_INTERVAL_MS", str(60 * 1000)))
BUG_SYNC_STRATEGY = os.getenv("BUG_SYNC_STRATEGY", "both")
BUG_SYNC_FALLBACK_TO_POLLING = _env_bool("BUG_SYNC_FALLBACK_TO_POLLING", "true")

# Loglevel
LOGLEVEL = os.getenv("LOGLEVEL", "WARNING")

# Log-Pfad
# Für lokale Entwicklung: HOST_LOG_PATH, für Docker: LOG_PATH
LOG_PATH = os.getenv("LOG_PATH", os.getenv("HOST_LOG_PATH", os.path.join(BACKEND_BASE_DIR, "logs")))

# CORS Origins - kommagetrennte Liste von erlaubten Origins
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
# Entferne Leerzeichen um die Origins
CORS_ORIGINS = [origin.strip() for origin in CORS_ORIGINS]

if __name__ == "__main__":
    print(f"Backend Base Directory: {BACKEND_BASE_DIR}")
    print(f"SQLAlchemy Database URL: {SQLALCHEMY_DATABASE_URL}")
    print(f"Upstream Base URL: {UPSTREAM_BASE_URL}")
    print(f"Sync Strategy: {SYNC_STRATEGY} (fallback: {SYNC_FALLBACK_STRATEGY})")
    print(f"Bug Sync Strategy: {BUG_SYNC_STRATEGY}")
    print(f"Log Path: {LOG_PATH}")
    print(f"CORS Origins: {CORS_ORIGINS}")
