"""
Einheitliche Behandlung von Fehlern des Primärsystems.

Transport- und Protokollfehler werden in ``ExternalError`` klassifiziert, je nach
Schwere geloggt, optional an eine externe Crash-Senke gemeldet und als stabiler
Fehler-Umschlag zurückgegeben.
"""

import socket
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from bugsync.models.sync import ExternalError
from bugsync.utils.logger import errorLog, warnLog

MODULE_NAME = "ErrorClassifier"

SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization")
MASK = "***MASKED***"
CONNECTION_CODES = {"TIMEOUT", "CONNECTION_REFUSED", "ENOTFOUND", "CONNECTION_ERROR", "NETWORK_ERROR"}

# Senke für Fehlerberichte: (Nachricht, bereinigter Kontext)
CrashReporter = Callable[[str, Dict[str, Any]], None]


class UpstreamError(Exception):
    """Einziger Fehlertyp, der die Transportgrenze des UpstreamClient verlässt."""

    def __init__(self, error: ExternalError, envelope: Dict[str, Any]):
        super().__init__(error.message)
        self.error = error
        self.envelope = envelope

    @property
    def status(self) -> Optional[int]:
        return self.error.status

    @property
    def code(self) -> str:
        return self.error.code


def _cause_chain(exc: BaseException):
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _connect_error_code(exc: httpx.ConnectError) -> str:
    for cause in _cause_chain(exc):
        if isinstance(cause, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(cause, ConnectionRefusedError):
            return "CONNECTION_REFUSED"
    text = str(exc).lower()
    if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
        return "ENOTFOUND"
    if "refused" in text:
        return "CONNECTION_REFUSED"
    return "CONNECTION_ERROR"


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class ErrorClassifier:
    def __init__(self, reporter: Optional[CrashReporter] = None):
        self.reporter = reporter

    def classify(self, exc: BaseException) -> ExternalError:
        if isinstance(exc, UpstreamError):
            return exc.error

        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            return ExternalError(
                message=str(exc) or "HTTP request failed",
                status=response.status_code,
                data=_response_data(response),
                url=str(exc.request.url),
                method=exc.request.method.upper(),
                code=f"HTTP_{response.status_code}",
            )

        if isinstance(exc, httpx.TimeoutException):
            return ExternalError(message="Request timed out", code="TIMEOUT", **_request_info(exc))

        if isinstance(exc, httpx.ConnectError):
            code = _connect_error_code(exc)
            message = {
                "ENOTFOUND": "Host could not be resolved",
                "CONNECTION_REFUSED": "Connection refused",
            }.get(code, "Connection failed")
            return ExternalError(message=message, code=code, **_request_info(exc))

        if isinstance(exc, httpx.RequestError):
            return ExternalError(message=str(exc) or "Network error", code="NETWORK_ERROR", **_request_info(exc))

        return ExternalError(
            message=str(exc) or "Unknown error",
            code=str(getattr(exc, "code", None) or "UNKNOWN"),
        )

    def should_report(self, error: ExternalError) -> bool:
        if error.status is not None and error.status >= 500:
            return True
        if error.code in CONNECTION_CODES:
            return True
        # 4xx werden nur bei Authentifizierungsproblemen gemeldet
        return error.status in (401, 403)

    def sanitize(self, data: Any) -> Any:
        if isinstance(data, dict):
            sanitized = {}
            for key, value in data.items():
                if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                    sanitized[key] = MASK
                else:
                    sanitized[key] = self.sanitize(value)
            return sanitized
        if isinstance(data, (list, tuple)):
            return [self.sanitize(item) for item in data]
        return data

    def to_envelope(self, error: ExternalError, context: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "success": False,
            "error": f"{context.get('service', 'upstream')} {context.get('operation', 'request')} failed",
            "code": error.code or "EXTERNAL_ERROR",
            "details": error.data if error.data is not None else error.message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def handle(self, exc: BaseException, context: Dict[str, Any]) -> Dict[str, Any]:
        error = self.classify(exc)
        self.log_error(error, context)
        self.report(error, context)
        return self.to_envelope(error, context)

    def log_error(self, error: ExternalError, context: Dict[str, Any]) -> None:
        service = context.get("service", "upstream")
        operation = context.get("operation", "request")
        log_data = {
            "service": service,
            "operation": operation,
            "error": error.model_dump(exclude={"data"}),
            "requestData": self.sanitize(context.get("requestData")),
        }
        if error.status is not None and error.status >= 500:
            errorLog(MODULE_NAME, f"External system error - {service}:{operation}", details=log_data)
        elif error.status is not None and error.status >= 400:
            warnLog(MODULE_NAME, f"External system client error - {service}:{operation}", details=log_data)
        else:
            errorLog(MODULE_NAME, f"External system network error - {service}:{operation}", details=log_data)

    def report(self, error: ExternalError, context: Dict[str, Any]) -> None:
        if self.reporter is None or not self.should_report(error):
            return
        report_context = {
            "service": context.get("service"),
            "operation": context.get("operation"),
            "status": error.status,
            "code": error.code,
            "url": error.url,
            "method": error.method,
            "requestData": self.sanitize(context.get("requestData")),
        }
        try:
            self.reporter(f"{context.get('service')} {context.get('operation')} failed: {error.message}", report_context)
        except Exception as report_error:
            errorLog(MODULE_NAME, "Crash reporter raised while reporting external error", details={
                "error": str(report_error), "error_type": type(report_error).__name__
            })


def _request_info(exc: httpx.RequestError) -> Dict[str, Any]:
    try:
        request = exc.request
    except RuntimeError:
        return {}
    return {"url": str(request.url), "method": request.method.upper()}
