"""Security event sink: append-only record of violations seen by the pipeline."""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Protocol

import structlog

logger = structlog.get_logger()


class SecurityEventType(str, Enum):
    CSRF_VIOLATION = "CSRF_VIOLATION"
    RATE_LIMIT_VIOLATION = "RATE_LIMIT_VIOLATION"
    FILE_UPLOAD_VIOLATION = "FILE_UPLOAD_VIOLATION"
    FILE_UPLOAD_WARNING = "FILE_UPLOAD_WARNING"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class SecurityEventSink(Protocol):
    def record(self, event_type: str, attributes: dict[str, Any]) -> None: ...


class LoggingEventSink:
    """Write every event as a structured ``security_event`` warning."""

    def record(self, event_type: str, attributes: dict[str, Any]) -> None:
        logger.warning("security_event", event_type=event_type, **attributes)


class MemoryEventSink:
    """Keep the most recent events in a bounded buffer (admin view, tests)."""

    def __init__(self, maxlen: int = 500) -> None:
        self._events: deque[dict[str, Any]] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(self, event_type: str, attributes: dict[str, Any]) -> None:
        entry = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **attributes,
        }
        with self._lock:
            self._events.append(entry)

    def recent(self, limit: int | None = None, event_type: str | None = None) -> list[dict[str, Any]]:
        """Newest first, optionally filtered by type."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        if event_type:
            events = [e for e in events if e["type"] == event_type]
        return events[:limit] if limit else events

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class FanOutEventSink:
    def __init__(self, sinks: Iterable[SecurityEventSink]) -> None:
        self._sinks = list(sinks)

    def record(self, event_type: str, attributes: dict[str, Any]) -> None:
        for sink in self._sinks:
            emit(sink, event_type, **attributes)


def emit(sink: SecurityEventSink | None, event_type: SecurityEventType | str, **attributes: Any) -> None:
    """Fire-and-forget: a failing sink is logged and never breaks the request."""
    if sink is None:
        return
    name = str(getattr(event_type, "value", event_type))
    try:
        sink.record(name, attributes)
    except Exception as exc:
        logger.error("security_event_sink_error", event_type=name, error=str(exc))


_default_sink: MemoryEventSink | None = None


def get_event_buffer(maxlen: int = 500) -> MemoryEventSink:
    """Process-wide recent-events buffer."""
    global _default_sink
    if _default_sink is None:
        _default_sink = MemoryEventSink(maxlen=maxlen)
    return _default_sink


def default_sink() -> SecurityEventSink:
    return FanOutEventSink([LoggingEventSink(), get_event_buffer()])


def reset_event_buffer() -> None:
    """Drop the process-wide buffer (for testing)."""
    global _default_sink
    _default_sink = None
