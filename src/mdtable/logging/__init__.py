"""Structured event logging for mdtable.

Provides the event schema, a filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from mdtable.logging.events import (
    EventLevel,
    EventType,
    MdTableEvent,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    set_log_dir,
)
from mdtable.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "MdTableEvent",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_sink",
    "set_log_dir",
]
