"""Logging setup for gatekeeper.

Application logs are JSON lines (or plain text) on stdout or a rotating file.
Every record is stamped with the current request id and scrubbed of fields
that would expose callers or credentials: raw rate limit keys and client
addresses are never logged, only ``hash_key`` digests.

Admission decisions go to the ``gatekeeper.events`` logger, which can also be
mirrored to an append-only file (``LOG_EVENT_LOG_PATH``).
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from gatekeeper.core.config import LogSettings, settings

EVENT_LOGGER_NAME = "gatekeeper.events"

REDACTED = "[REDACTED]"

# Extras that must never reach a log line verbatim
REDACTED_FIELDS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "password",
        "secret",
        "token",
        "redis_url",
        "rate_limit_key",
        "client_ip",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_key(key: str) -> str:
    """Short, stable digest of a rate limit key, safe to log."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def redact(value: Any, fields: frozenset[str] = REDACTED_FIELDS) -> Any:
    """Replace values of sensitive fields, descending into mappings and sequences."""
    if isinstance(value, Mapping):
        return {k: REDACTED if k.lower() in fields else redact(v, fields) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v, fields) for v in value)
    return value


def _extras(record: LogRecord, fields: frozenset[str]) -> dict[str, Any]:
    return {
        name: REDACTED if name.lower() in fields else redact(value, fields)
        for name, value in vars(record).items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Stamp records with the request id of the current context."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub sensitive extras in place, so every formatter sees redacted values."""

    def __init__(self, fields: Iterable[str] | None = None) -> None:
        super().__init__()
        self.fields = frozenset(f.lower() for f in fields) if fields else REDACTED_FIELDS

    def filter(self, record: LogRecord) -> bool:
        for name, value in _extras(record, self.fields).items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: level, logger, event name and extras."""

    def __init__(self, *, fields: Iterable[str] | None = None) -> None:
        super().__init__()
        self.fields = frozenset(f.lower() for f in fields) if fields else REDACTED_FIELDS

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update({k: v for k, v in _extras(record, self.fields).items() if v is not None})

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/gatekeeper.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_event_log(path: str | None) -> logging.Logger:
    """Attach an append-only file sink to the admission event logger.

    Each line is ``<asctime> - <event> key_hash=<hash>``. The sink records every
    admission event, including the DEBUG-level ones emitted when ``log_events``
    is off. Calling this twice with the same path does not duplicate the handler.

    Args:
        path: File receiving admission events, or None for no file sink.

    Returns:
        The event logger.
    """

    event_logger = logging.getLogger(EVENT_LOGGER_NAME)
    if not path:
        return event_logger

    file_path = Path(path).resolve()
    for handler in event_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == file_path:
            return event_logger

    file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(file_path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(message)s key_hash=%(key_hash)s", defaults={"key_hash": "-"})
    )
    handler.addFilter(SensitiveDataFilter())
    event_logger.addHandler(handler)
    event_logger.setLevel(logging.DEBUG)
    return event_logger


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the root handler described by ``LOG_*`` settings.

    Replaces any existing root handlers, then attaches the event file sink when
    one is configured.
    """

    cfg = log_settings or settings.log
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    handler = _build_handler(cfg)
    # Handler-level threshold so loggers opened to DEBUG (the event sink) stay quiet here
    handler.setLevel(level)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    configure_event_log(cfg.event_log_path)

    # uvicorn installs its own handlers; keep its records from printing twice
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
