"""In-memory event store for aggregation runs and live price activity."""

import threading
import uuid
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


class EventType:
    """Event types recorded by the price engine."""

    AGGREGATION_START = "aggregation_start"
    AGGREGATION_ITEM_ERROR = "aggregation_item_error"
    AGGREGATION_COMPLETE = "aggregation_complete"
    AGGREGATION_FAILED = "aggregation_failed"
    LIVE_UPDATE = "live_update"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    VOLATILITY_GATED = "volatility_gated"


@dataclass
class Event:
    """Represents a system event."""

    id: str
    timestamp: str
    trace_id: str | None
    event_type: str
    component: str
    message: str
    context: dict[str, Any]
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class EventStore:
    """Bounded, thread-safe event log with age-based purging."""

    def __init__(self, max_size: int = 10000, max_age_seconds: int = 3600):
        """
        Initialize the event store.

        Args:
            max_size: Maximum number of events to store (default 10000)
            max_age_seconds: Maximum age of events in seconds (default 1 hour)
        """
        self.max_size = max_size
        self.max_age_seconds = max_age_seconds
        self._events: deque[Event] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def add_event(
        self,
        trace_id: str | None,
        event_type: str,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> Event:
        """Append an event and return it."""
        event = Event(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            trace_id=trace_id,
            event_type=event_type,
            component=component,
            message=message,
            context=context or {},
            duration_ms=duration_ms,
        )
        with self._lock:
            self._events.append(event)
        return event

    def get_recent_events(self, limit: int = 100) -> list[Event]:
        """Most recent events, oldest first."""
        with self._lock:
            events_list = list(self._events)
        return events_list[-limit:] if limit > 0 else []

    def get_events_by_trace(self, trace_id: str) -> list[Event]:
        """All events for one trace id in chronological order."""
        with self._lock:
            return [event for event in self._events if event.trace_id == trace_id]

    def get_events_by_type(self, event_type: str, limit: int = 100) -> list[Event]:
        """Most recent events of one type, oldest first."""
        with self._lock:
            matching_events = [event for event in self._events if event.event_type == event_type]
        return matching_events[-limit:] if limit > 0 else []

    def count_by_type(self) -> dict[str, int]:
        """Number of stored events per event type."""
        with self._lock:
            return dict(Counter(event.event_type for event in self._events))

    def clear_old_events(self, max_age_seconds: int | None = None) -> int:
        """
        Remove events older than the specified age.

        Args:
            max_age_seconds: Maximum age in seconds (uses instance default if None)

        Returns:
            Number of events removed
        """
        max_age = max_age_seconds or self.max_age_seconds
        cutoff_time = datetime.now(UTC) - timedelta(seconds=max_age)

        with self._lock:
            initial_count = len(self._events)
            kept = [
                event
                for event in self._events
                if datetime.fromisoformat(event.timestamp.replace("Z", "+00:00")) > cutoff_time
            ]
            self._events = deque(kept, maxlen=self.max_size)
            return initial_count - len(self._events)

    def clear(self) -> None:
        """Clear all events from the store."""
        with self._lock:
            self._events.clear()

    def size(self) -> int:
        """Get the current number of events in the store."""
        with self._lock:
            return len(self._events)

    def get_all_events(self) -> list[Event]:
        """All stored events in chronological order."""
        with self._lock:
            return list(self._events)
