"""
Structured logging for the ABG Interpreter Service.

One JSON object per line on stderr. Each entry carries the request id of the
HTTP request that produced it (or of the request that submitted the job, for
background work) plus any keyword data passed to ``StructuredLogger``.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "abg-interpreter"

# Noisy client libraries capped at WARNING
_QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "uvicorn.access")

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if needed."""
    request_id = request_id or uuid.uuid4().hex[:8]
    request_id_var.set(request_id)
    return request_id


class JSONFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "message": record.getMessage(),
        }
        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id
        fields = getattr(record, "fields", None)
        if fields:
            entry["data"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """``logging.Logger`` front end taking keyword fields: ``log.info("msg", job_id=...)``."""

    def __init__(self, name: str, **context: Any):
        self.logger = logging.getLogger(name)
        self.context = context

    def bind(self, **context: Any) -> "StructuredLogger":
        """Child logger that adds ``context`` to every entry."""
        return StructuredLogger(self.logger.name, **{**self.context, **context})

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        fields = {**self.context, **fields}
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": fields} if fields else None)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **fields)


def setup_logging(
    level: str = "INFO",
    service_name: str = SERVICE_NAME,
    use_json: bool = True
) -> None:
    """Replace root handlers with a single stderr handler.

    Args:
        level: Level name, e.g. "INFO" or "debug"
        service_name: Value of the ``service`` field in JSON entries
        use_json: JSON lines when True, plain text otherwise (local runs)
    """
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        handler.setFormatter(JSONFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str] = None,
) -> None:
    """One access-log entry per HTTP request. 5xx responses are logged as errors."""
    log = StructuredLogger("http")
    fields: Dict[str, Any] = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if client_ip:
        fields["client_ip"] = _mask_ip(client_ip)

    message = f"{method} {path} {status_code}"
    if status_code >= 500:
        log.error(message, **fields)
    elif status_code >= 400:
        log.warning(message, **fields)
    else:
        log.info(message, **fields)


def _mask_ip(ip: str) -> str:
    """Keep the network part only: 10.1.2.3 -> 10.1.x.x, 2001:db8::1 -> 2001:db8:x."""
    if ip.count(".") == 3:
        a, b, _, _ = ip.split(".")
        return f"{a}.{b}.x.x"
    if ":" in ip:
        groups = [g for g in ip.split(":") if g]
        return ":".join(groups[:2] + ["x"]) if groups else "x"
    return "x"
