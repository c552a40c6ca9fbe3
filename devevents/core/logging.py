"""Logging utilities with JSON formatting, redaction, and request correlation.

This module centralizes logging configuration, including:
- Context-aware request_id propagation via contextvars
- Redaction of caller identifiers (cookies, bearer tokens, session ids)
- JSON formatter for machine-friendly logs
- Configurable stdout/file handlers with rotation support
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

from devevents.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Keys whose values identify a caller and must never reach log sinks
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "token",
    "redis_token",
    "password",
    "secret",
    "session_token",
    "user_id",
    "partition_key",
    "redis_url",
})

# Attributes every LogRecord carries; anything else arrived through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

REDACTED = "[REDACTED]"


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_key(value: str) -> str:
    """Short SHA-256 digest so partition keys can be correlated without exposing ids."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    """Mask values under sensitive keys, recursing into containers.

    A bearer-derived user id (``bearer:<token>``) is masked wherever it
    appears, since it embeds the raw token.
    """
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive_keys else _redact(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, sensitive_keys) for v in value)
    if isinstance(value, str) and value.lower().startswith("bearer:"):
        return REDACTED
    return value


def _record_extras(record: LogRecord, sensitive_keys: frozenset[str]) -> dict[str, Any]:
    """Redacted copy of the fields passed through ``extra``."""
    return {
        key: REDACTED if key.lower() in sensitive_keys else _redact(value, sensitive_keys)
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact caller identifiers on the record, whatever formatter follows."""

    def __init__(self, sensitive_keys: Iterable[str] = SENSITIVE_KEYS_DEFAULT) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in sensitive_keys)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _record_extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: fixed envelope first, then redacted extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] = SENSITIVE_KEYS_DEFAULT) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in sensitive_keys)

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = _record_extras(record, self.sensitive_keys)
        request_id = extras.pop("request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        payload.update(extras)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Construct the logging handler (stdout or rotating file)."""

    if log_settings.output.lower() == "file":
        file_path = Path(log_settings.file_path or "logs/devevents.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if log_settings.max_bytes:
            return RotatingFileHandler(
                file_path,
                maxBytes=log_settings.max_bytes,
                backupCount=log_settings.backup_count,
                encoding="utf-8",
            )
        return logging.FileHandler(file_path, encoding="utf-8")

    return logging.StreamHandler(sys.stdout)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Configure root logger with JSON formatter and redaction.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = _build_handler(cfg)

    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
