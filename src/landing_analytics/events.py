# src/landing_analytics/events.py
"""
Event emission boundary.

Trackers call EventEmitter.emit(name, properties). Delivery is best effort:
sink failures are logged and swallowed so instrumentation never raises
into page code.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from sqlalchemy.engine import Engine

from landing_analytics import db_utils
from landing_analytics.logging_utils import get_logger

log = get_logger("events")

# Event catalog
UTM_PARAMETERS_DETECTED = "utm_parameters_detected"
SECTION_VIEWED = "section_viewed"
SCROLL_DEPTH = "scroll_depth"
FORM_SUBMISSION_STARTED = "form_submission_started"
FORM_SUBMISSION_COMPLETED = "form_submission_completed"
FORM_SUBMISSION_FAILED = "form_submission_failed"


@dataclass
class TrackedEvent:
    event: str
    distinct_id: str
    session_id: str
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "distinct_id": self.distinct_id,
            "session_id": self.session_id,
            "properties": self.properties,
            "timestamp": self.timestamp,
        }


class EventSink(Protocol):
    def capture(self, event: TrackedEvent) -> None: ...


def clean_properties(properties: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Flat property bag with absent (None) values dropped."""
    return {k: v for k, v in (properties or {}).items() if v is not None}


class EventEmitter:
    """Binds a sink to one visitor and browsing session."""

    def __init__(self, sink: EventSink, *, distinct_id: str, session_id: str,
                 clock: Optional[Callable[[], datetime]] = None):
        self.sink = sink
        self.distinct_id = distinct_id
        self.session_id = session_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def emit(self, event: str, properties: Mapping[str, Any] | None = None) -> None:
        try:
            tracked = TrackedEvent(
                event=event,
                distinct_id=self.distinct_id,
                session_id=self.session_id,
                properties=clean_properties(properties),
                timestamp=self._clock(),
            )
            self.sink.capture(tracked)
        except Exception:
            log.exception("event_emit_failed", extra={"event_name": event, "distinct_id": self.distinct_id})


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------
class LoggingSink:
    def __init__(self, logger=None):
        self._log = logger or get_logger("events.sink")

    def capture(self, event: TrackedEvent) -> None:
        self._log.info(event.event, extra={
            "distinct_id": event.distinct_id,
            "session_id": event.session_id,
            "properties": event.properties,
        })


class RecordingSink:
    """Keeps every event in memory, in delivery order."""

    def __init__(self):
        self.events: List[TrackedEvent] = []

    def capture(self, event: TrackedEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[TrackedEvent]:
        return [e for e in self.events if e.event == name]

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for e in self.events:
            out[e.event] = out.get(e.event, 0) + 1
        return out


class FanoutSink:
    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks = list(sinks)

    def capture(self, event: TrackedEvent) -> None:
        for sink in self.sinks:
            try:
                sink.capture(event)
            except Exception:
                log.exception("sink_capture_failed",
                              extra={"sink": type(sink).__name__, "event_name": event.event})


class EventDrain:
    """
    Buffers events and flushes them to the tracked_events table when the
    buffer reaches `flush_every`. A failed flush keeps the buffer for the
    next attempt.
    """
    def __init__(self, flush_every: int = 1000, engine: Engine | None = None):
        self.flush_every = flush_every
        self._buf: List[Dict[str, Any]] = []
        self.total_seen = 0
        self.total_written = 0
        self._engine = engine

    def capture(self, event: TrackedEvent) -> None:
        self.total_seen += 1
        self._buf.append(event.to_row())
        if len(self._buf) >= self.flush_every:
            self._flush_internal(reason="size_threshold")

    @property
    def pending(self) -> int:
        return len(self._buf)

    def flush(self, *, reason: str = "manual") -> int:
        return self._flush_internal(reason=reason)

    def _flush_internal(self, *, reason: str) -> int:
        n = len(self._buf)
        if n == 0:
            return 0
        try:
            wrote = db_utils.write_events(self._buf, engine=self._engine)
        except Exception:
            # Keep buffer for retry; log the failure
            log.exception("events_flush_failed", extra={"reason": reason, "batch_size": n})
            return 0
        self._buf.clear()
        self.total_written += wrote
        log.info("events_flush", extra={"reason": reason, "batch_size": wrote, "total_seen": self.total_seen})
        return wrote
