"""Event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Formula outcomes
    formula_applied = "formula_applied"
    formula_failed = "formula_failed"

    # Document processing
    table_processed = "table_processed"
    document_processed = "document_processed"
    duplicate_table_id = "duplicate_table_id"
    table_cycle = "table_cycle"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

FORMULA_PARSE_ERROR = "formula_parse_error"
FORMULA_EVAL_ERROR = "formula_eval_error"
FORMULA_ASSIGN_ERROR = "formula_assign_error"
TABLE_ID_ERROR = "table_id_error"
TABLE_CYCLE_ERROR = "table_cycle_error"

_MAX_VALUE_LEN = 256


def _truncate_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with long string values truncated."""
    out: dict[str, Any] = {}
    for k, v in context.items():
        if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
            v = v[:_MAX_VALUE_LEN] + "...[truncated]"
        out[k] = v
    return out


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class MdTableEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Set by ``set_log_dir``; ``None`` discards events.
_sink: Any = None  # EventSink | None


def set_log_dir(log_dir: Path | str | None, *, fsync: bool = False) -> None:
    """Configure the module-level event sink.

    This should be called early in a CLI command.  If it is never called
    (or called with ``None``), ``emit()`` silently discards events.
    """
    global _sink
    from mdtable.logging.sink import EventSink

    if log_dir is None:
        _sink = None
        return
    _sink = EventSink(Path(log_dir), fsync=fsync)


def get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[mdtable] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: MdTableEvent) -> None:
    """Write an event to the configured log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": _truncate_context(event.context)})
        sink.write(event)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        MdTableEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        MdTableEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        MdTableEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
