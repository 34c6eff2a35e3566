"""
Structured logging for the ledger.

Every record is one JSON object:

    {"ts": ..., "level": "INFO", "logger": "ledger_kernel.services.ledger",
     "component": "services.ledger", "message": "posting_group_posted",
     "correlation_id": ..., "operation": "record_cash_payment",
     "source_type": "accommodation_payment", "source_id": ..., <extra fields>}

The message is an event name; everything else travels as fields.  The
request fields (who, which operation, which stay or assignment, which
posting group) come from ``LogContext.bind``.  A ledger error logged with
``exc_info`` becomes an ``error`` object with its code, its category, a
retryable flag and its structured attributes.
"""

__all__ = [
    "LOG_CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from ledger_kernel.exceptions import ConcurrencyConflict, LedgerError

LOG_CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "operation",
    "source_type",
    "source_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


def _context_value(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    def bind(**fields: Any) -> "_BoundContext":
        """
        Layer fields over the current context for the duration of a with-block.

        None values leave the outer value in place.  Names outside
        LOG_CONTEXT_FIELDS are ignored, so a caller can pass a wider mapping.
        """
        return _BoundContext(
            {
                name: _context_value(value)
                for name, value in fields.items()
                if name in LOG_CONTEXT_FIELDS and value is not None
            }
        )


class _BoundContext:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        merged = {**_context.get(), **self._fields}
        self._token = _context.set(MappingProxyType(merged))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "ledger_kernel"

RESERVED_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _error_category(exc: LedgerError) -> str:
    for cls in type(exc).__mro__:
        if LedgerError in cls.__bases__:
            return cls.code
    return LedgerError.code


def _error_payload(exc: BaseException) -> dict[str, Any]:
    if not isinstance(exc, LedgerError):
        return {"type": type(exc).__name__, "message": str(exc)}
    return {
        "type": type(exc).__name__,
        "message": str(exc),
        "code": exc.code,
        "category": _error_category(exc),
        "retryable": isinstance(exc, ConcurrencyConflict),
        "fields": {k: v for k, v in vars(exc).items() if not k.startswith("_")},
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extra fields, error."""

    def format(self, record: logging.LogRecord) -> str:
        component = record.name
        if component.startswith(f"{_LOGGER_PREFIX}."):
            component = component[len(_LOGGER_PREFIX) + 1:]

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "component": component,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, val in vars(record).items():
            if key not in RESERVED_RECORD_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["error"] = _error_payload(exc)
            # Tracebacks only for errors outside the LedgerError hierarchy.
            if not isinstance(exc, LedgerError):
                payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ledger_kernel namespace, e.g. ``get_logger("services.ledger")``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler | None:
    """
    Install the JSON handler on the ledger_kernel logger.

    Only the first call has an effect; it returns the installed handler,
    later calls return None.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return None
        installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        installed.setFormatter(StructuredFormatter())
        _installed = installed

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False
    root_logger.addHandler(installed)
    return installed


def reset_logging() -> None:
    """Remove the installed handler so configure_logging runs again (tests)."""
    global _installed
    with _lock:
        installed, _installed = _installed, None
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    if installed is not None:
        root_logger.removeHandler(installed)
    root_logger.setLevel(logging.WARNING)
