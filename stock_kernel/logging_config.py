"""Structured JSON logging for the stock kernel."""

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
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.exceptions import StockKernelError

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "order_id", "transfer_id", "product_id")

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Request-scoped log fields carried in context variables.

    Services bind ``correlation_id`` and ``actor_id`` on entry; fulfillment
    adds ``order_id``, transfers add ``transfer_id`` once the record exists,
    and admin operations scoped to one product add ``product_id``.
    """

    FIELDS = _CONTEXT_FIELDS

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"stock_log_{name}", default=None) for name in FIELDS
    }

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields, skipping the unset ones."""
        return {
            name: value
            for name, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block; None values are ignored."""
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = LogContext._vars[name]
                self._tokens.append((var, var.set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RESERVED_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    # UUIDs (ids everywhere), datetimes (clock values), Decimals (unit weights)
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into ``exc_*`` keys, including StockKernelError attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, StockKernelError):
        fields["exc_code"] = exc.code
        fields.update(
            (f"exc_{name}", value)
            for name, value in vars(exc).items()
            if not name.startswith("_")
        )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: level, logger, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_KEYS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT = "stock_kernel"
_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``stock_kernel``, e.g. ``get_logger("services.transfer")``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``stock_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``; engine
    initialization calls this with the configured ``log_level`` and tests
    call it with DEBUG, whichever runs first wins.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        _installed_handler = handler or logging.StreamHandler(stream or sys.stderr)
        _installed_handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(_ROOT)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_installed_handler)


def reset_logging() -> None:
    """Detach the handler installed by ``configure_logging``. Test helper."""
    global _installed_handler
    with _setup_lock:
        root = logging.getLogger(_ROOT)
        if _installed_handler is not None:
            root.removeHandler(_installed_handler)
            _installed_handler = None
        root.setLevel(logging.WARNING)
