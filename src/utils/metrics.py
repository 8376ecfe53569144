"""Metrics calculator for aggregating event store data."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from src.utils.event_store import EventStore, EventType


@dataclass
class Metrics:
    """Represents aggregated engine metrics."""

    total_runs: int
    completed_runs: int
    failed_runs: int
    cancelled_runs: int
    average_run_duration_ms: float
    snapshots_created: int
    items_processed: int
    items_skipped_insufficient_data: int
    items_volatility_gated: int
    item_errors: int
    observations_excluded_missing_rate: int
    live_updates_accepted: int
    upstream_failures: int
    uptime_seconds: int

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return asdict(self)


class MetricsCalculator:
    """Calculates metrics from event store data."""

    def __init__(self, event_store: EventStore, start_time: Optional[datetime] = None):
        """
        Initialize the metrics calculator.

        Args:
            event_store: The event store to calculate metrics from
            start_time: Optional start time for uptime calculation (defaults to now)
        """
        self.event_store = event_store
        self.start_time = start_time or datetime.now(timezone.utc)

    def calculate(self) -> Metrics:
        """Calculate metrics from the events currently in the store."""
        events = self.event_store.get_all_events()

        completes = [e for e in events if e.event_type == EventType.AGGREGATION_COMPLETE]
        failures = [e for e in events if e.event_type == EventType.AGGREGATION_FAILED]
        cancelled = [e for e in completes if e.context.get("cancelled")]

        durations = [e.duration_ms for e in completes if e.duration_ms is not None]
        average_run_duration_ms = sum(durations) / len(durations) if durations else 0.0

        def total(key: str) -> int:
            return sum(int(e.context.get(key, 0)) for e in completes)

        current_time = datetime.now(timezone.utc)

        return Metrics(
            total_runs=len(completes) + len(failures),
            completed_runs=len(completes) - len(cancelled),
            failed_runs=len(failures),
            cancelled_runs=len(cancelled),
            average_run_duration_ms=average_run_duration_ms,
            snapshots_created=total("created"),
            items_processed=total("processed"),
            items_skipped_insufficient_data=total("skipped_insufficient_data"),
            items_volatility_gated=total("volatility_gated"),
            item_errors=len(
                [e for e in events if e.event_type == EventType.AGGREGATION_ITEM_ERROR]
            ),
            observations_excluded_missing_rate=total("excluded_missing_rate"),
            live_updates_accepted=len(
                [e for e in events if e.event_type == EventType.LIVE_UPDATE]
            ),
            upstream_failures=len(
                [e for e in events if e.event_type == EventType.UPSTREAM_UNAVAILABLE]
            ),
            uptime_seconds=int((current_time - self.start_time).total_seconds()),
        )
