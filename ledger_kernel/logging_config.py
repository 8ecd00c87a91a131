"""
Structured JSON logging for the ledger kernel.

Every log line is one JSON object.  Request-scoped identifiers live in
``LogContext`` and are merged into each line:

    correlation_id   one API call or one direct recorder call
    ledger_id        tenant ledger being written
    actor_id         caller named by the API
    reference_id     caller's idempotency key for the write
    transaction_id   ledger transaction once it is known

A recorder opens ``LogContext.ledger_write(ledger_id, reference_id)``.  Inside
an API call the API's correlation id is kept, so the API line and every
kernel line of one request share it.  Outside one, a fresh id is minted.
"""

__all__ = [
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
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"log_{name}", default=None)
    for name in ("correlation_id", "ledger_id", "actor_id", "reference_id", "transaction_id")
}


class LogContext:
    """Thread-safe / async-safe holder for ledger request identifiers."""

    @staticmethod
    def _var(name: str) -> ContextVar[str | None]:
        try:
            return _FIELDS[name]
        except KeyError:
            raise KeyError(f"Unknown log context field: {name}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields. None values are ignored."""
        for name, val in fields.items():
            var = cls._var(name)
            if val is not None:
                var.set(str(val))

    @classmethod
    def get(cls, name: str) -> str | None:
        return cls._var(name).get()

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Non-None fields, in declaration order."""
        return {name: var.get() for name, var in _FIELDS.items() if var.get() is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _FIELDS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Set fields for the duration of a ``with`` block, then restore them."""
        for name in fields:
            cls._var(name)
        return _Binding(fields)

    @classmethod
    def ledger_write(cls, ledger_id: Any, reference_id: str | None) -> "_Binding":
        """
        Scope for one recorder call.

        Keeps an enclosing correlation id and drops any transaction id left
        over from an earlier write in the same request.
        """
        return _Binding(
            {
                "correlation_id": cls.get("correlation_id") or uuid4(),
                "ledger_id": ledger_id,
                "reference_id": reference_id,
            },
            reset=("transaction_id",),
        )


class _Binding:
    def __init__(self, fields: dict[str, Any], reset: tuple[str, ...] = ()):
        self._fields = fields
        self._reset = reset
        self._tokens: list[tuple[ContextVar[str | None], Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name in self._reset:
            var = _FIELDS[name]
            self._tokens.append((var, var.set(None)))
        for name, val in self._fields.items():
            if val is not None:
                var = _FIELDS[name]
                self._tokens.append((var, var.set(str(val))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Ids, dates, percents and model enums (AccountType, LedgerStatus...)."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return format(obj, "f")
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """
    Formats each log record as a single JSON line.

    Context fields win over ``extra=`` fields of the same name.  A
    LedgerKernelError adds ``exc_code``, ``exc_http_status`` and its public
    attributes (``exc_field``, ``exc_period_id``, ``exc_available``...).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
                payload["exc_http_status"] = getattr(exc, "http_status", None)
            for k, v in vars(exc).items():
                if not k.startswith("_") and k not in ("args", "code"):
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "ledger_kernel"

_lock = threading.Lock()
_installed: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ledger_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def _level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> bool:
    """
    Install one JSON handler on the ledger_kernel logger.

    Idempotent: returns False and changes nothing once a handler is
    installed.  ``level`` accepts a name such as ``"DEBUG"`` from
    configuration.
    """
    global _installed
    resolved = _level(level)
    with _lock:
        if _installed is not None:
            return False
        h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        h.setFormatter(StructuredFormatter())
        root_logger = logging.getLogger(_LOGGER_PREFIX)
        root_logger.setLevel(resolved)
        root_logger.propagate = False
        root_logger.addHandler(h)
        _installed = h
        return True


def reset_logging() -> None:
    """Remove the handler installed by configure_logging. FOR TESTING ONLY."""
    global _installed
    with _lock:
        logger = logging.getLogger(_LOGGER_PREFIX)
        if _installed is not None:
            logger.removeHandler(_installed)
            _installed = None
        logger.setLevel(logging.WARNING)
