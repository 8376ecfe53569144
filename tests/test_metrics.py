"""Property-based tests for metrics calculation."""

import uuid
from datetime import UTC, datetime, timedelta

from hypothesis import given
from hypothesis import strategies as st

from src.utils.event_store import EventStore, EventType
from src.utils.metrics import MetricsCalculator


def _complete(store, processed, created, skipped, excluded, cancelled=False, duration_ms=100.0):
    store.add_event(
        trace_id=str(uuid.uuid4()),
        event_type=EventType.AGGREGATION_COMPLETE,
        component="aggregation_service",
        message="Aggregation run finished",
        context={
            "processed": processed,
            "created": created,
            "skipped_insufficient_data": skipped,
            "excluded_missing_rate": excluded,
            "error_count": processed - created - skipped,
            "cancelled": cancelled,
        },
        duration_ms=duration_ms,
    )


class TestMetricsCalculation:
    """Tests for metrics calculation accuracy."""

    @given(
        runs=st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=20),
                st.integers(min_value=0, max_value=20),
                st.integers(min_value=0, max_value=50),
                st.booleans(),
            ),
            max_size=15,
        ),
        num_failed=st.integers(min_value=0, max_value=5),
    )
    def test_run_totals_are_accurate(self, runs, num_failed):
        """
        **Property: run metrics sum the summaries of completed runs**

        For any set of aggregation run summaries, the metrics SHALL report the
        summed counters and classify cancelled and failed runs separately.
        """
        store = EventStore()
        for created, skipped, excluded, cancelled in runs:
            _complete(store, created + skipped, created, skipped, excluded, cancelled)
        for _ in range(num_failed):
            store.add_event(
                trace_id=str(uuid.uuid4()),
                event_type=EventType.AGGREGATION_FAILED,
                component="aggregation_service",
                message="Storage unavailable",
            )

        metrics = MetricsCalculator(store).calculate()

        num_cancelled = sum(1 for run in runs if run[3])
        assert metrics.total_runs == len(runs) + num_failed
        assert metrics.failed_runs == num_failed
        assert metrics.cancelled_runs == num_cancelled
        assert metrics.completed_runs == len(runs) - num_cancelled
        assert metrics.snapshots_created == sum(run[0] for run in runs)
        assert metrics.items_skipped_insufficient_data == sum(run[1] for run in runs)
        assert metrics.items_processed == sum(run[0] + run[1] for run in runs)
        assert metrics.observations_excluded_missing_rate == sum(run[2] for run in runs)

    @given(durations=st.lists(st.floats(min_value=1.0, max_value=10_000.0), min_size=1, max_size=10))
    def test_average_duration(self, durations):
        """
        **Property: average run duration is the mean of completed run durations**
        """
        store = EventStore()
        for duration in durations:
            _complete(store, 1, 1, 0, 0, duration_ms=duration)

        metrics = MetricsCalculator(store).calculate()

        assert abs(metrics.average_run_duration_ms - sum(durations) / len(durations)) < 1e-6

    def test_empty_store(self):
        metrics = MetricsCalculator(EventStore()).calculate()

        assert metrics.total_runs == 0
        assert metrics.average_run_duration_ms == 0.0
        assert metrics.live_updates_accepted == 0

    @given(
        num_item_errors=st.integers(min_value=0, max_value=20),
        num_live_updates=st.integers(min_value=0, max_value=20),
        num_upstream_failures=st.integers(min_value=0, max_value=20),
    )
    def test_event_counters(self, num_item_errors, num_live_updates, num_upstream_failures):
        """
        **Property: per-event counters match the number of recorded events**
        """
        store = EventStore()
        for event_type, count in (
            (EventType.AGGREGATION_ITEM_ERROR, num_item_errors),
            (EventType.LIVE_UPDATE, num_live_updates),
            (EventType.UPSTREAM_UNAVAILABLE, num_upstream_failures),
        ):
            for _ in range(count):
                store.add_event(None, event_type, "test", "event")

        metrics = MetricsCalculator(store).calculate()

        assert metrics.item_errors == num_item_errors
        assert metrics.live_updates_accepted == num_live_updates
        assert metrics.upstream_failures == num_upstream_failures


class TestUptime:
    @given(seconds=st.integers(min_value=0, max_value=86_400))
    def test_uptime_counts_from_start_time(self, seconds):
        """
        **Property: uptime is measured from the configured start time**
        """
        start_time = datetime.now(UTC) - timedelta(seconds=seconds)

        metrics = MetricsCalculator(EventStore(), start_time=start_time).calculate()

        assert seconds <= metrics.uptime_seconds <= seconds + 2

    def test_to_dict_contains_every_metric(self):
        metrics = MetricsCalculator(EventStore()).calculate().to_dict()

        assert set(metrics) >= {
            "total_runs",
            "snapshots_created",
            "live_updates_accepted",
            "upstream_failures",
            "uptime_seconds",
        }
