import logging
import os
import json
import enum
from datetime import datetime
from logging.handlers import RotatingFileHandler

from pydantic import BaseModel

# Stelle sicher, dass config.py zuerst geladen wird, um dotenv zu initialisieren
from ..config import LOG_PATH

# --- Konfiguration ---
LOGGER_NAME = "bugsync_backend"
LOG_FILE_NAME = "backend.log"
LOG_FILE_PATH = os.path.join(LOG_PATH, LOG_FILE_NAME)
LOG_LEVEL_ENV_VAR = "LOGLEVEL"  # Umgebungsvariable für das Log-Level
DEFAULT_LOG_LEVEL = "INFO"

# Log-Format
LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger():
    """Konfiguriert den Logger für die gesamte Anwendung."""
    log_level_str = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL).upper()
    numeric_level = getattr(logging, log_level_str, logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False

    if not logger.handlers:
        try:
            os.makedirs(LOG_PATH, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE_PATH, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8'
            )
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            logger.addHandler(file_handler)
        except Exception as e:
            print(f"FEHLER: Konnte FileHandler für Logger nicht erstellen: {e}", flush=True)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


_logger_instance = setup_logger()


def enum_aware_default(obj):
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, BaseException):
        return f"{type(obj).__name__}: {obj}"
    try:
        return str(obj)
    except Exception:
        return f"<unserializable_object_type_{type(obj).__name__}>"


def _log(level: int, module_name: str, message: str, details: object = None):
    """Interne Log-Funktion, die Nachrichten formatiert und an den Logger sendet."""
    log_message = message
    if details is not None:
        try:
            details_str = json.dumps(details, indent=2, ensure_ascii=False, default=enum_aware_default)
            log_message = f"{message} | Details: {details_str}"
        except (TypeError, ValueError) as e:
            _logger_instance.error(f"Failed to serialize log details for module {module_name}: {e}. Original details: {details!r}")
            log_message = f"{message} | Details (nicht serialisierbar, siehe vorherigen Log-Fehler)"

    module_specific_logger = logging.getLogger(f"{LOGGER_NAME}.{module_name}")
    module_specific_logger.log(level, log_message)


def debugLog(module_name: str, message: str, details: object = None):
    _log(logging.DEBUG, module_name, message, details)


def infoLog(module_name: str, message: str, details: object = None):
    _log(logging.INFO, module_name, message, details)


def warnLog(module_name: str, message: str, details: object = None):
    _log(logging.WARNING, module_name, message, details)


def errorLog(module_name: str, message: str, details: object = None):
    _log(logging.ERROR, module_name, message, details)
