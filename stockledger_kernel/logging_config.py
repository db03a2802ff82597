"""
Structured JSON logging for stockledger.

Every record is rendered as one JSON object per line. Request-scoped fields
(tenant, actor, correlation and operation ids) live in a single ContextVar so
they follow the current thread or task without being threaded through call
signatures. Structured data passed via ``extra={...}`` is merged into the
payload; exceptions raised from the StockLedgerError hierarchy contribute
their ``code`` and public attributes.

Loggers are namespaced under ``stockledger.`` and never propagate to the
root logger once configured.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

_LOGGER_PREFIX = "stockledger"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "tenant_id",
    "actor_id",
    "operation_id",
)

_context: ContextVar[dict[str, str]] = ContextVar("stockledger_log_context")


class LogContext:
    """Request-scoped log fields, safe across threads and asyncio tasks."""

    @staticmethod
    def _validate(fields: dict[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        return {k: str(v) for k, v in fields.items() if v is not None}

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Update context fields. None values are ignored."""
        current = dict(_context.get({}))
        current.update(cls._validate(fields))
        _context.set(current)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get({}))

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type[LogContext]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        merged = dict(_context.get({}))
        merged.update(cls._validate(fields))
        token = _context.set(merged)
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return repr(obj)


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single-line JSON document."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Return ``stockledger.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configure_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``stockledger`` logger. Idempotent."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        base = logging.getLogger(_LOGGER_PREFIX)
        base.setLevel(level.upper() if isinstance(level, str) else level)
        base.propagate = False
        base.addHandler(target)


def reset_logging() -> None:
    """Undo configure_logging. Test helper."""
    global _configured
    with _configure_lock:
        _configured = False
        base = logging.getLogger(_LOGGER_PREFIX)
        base.handlers.clear()
        base.setLevel(logging.NOTSET)
        base.propagate = True
    LogContext.clear()
