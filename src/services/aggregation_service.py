"""Batch aggregation of raw observations into daily snapshots."""

import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from src.models.price_data import AggregationResult, DailySnapshot, PriceAnchors
from src.services.currency_normalizer import CurrencyNormalizer
from src.services.errors import PersistenceError, StorageUnavailableError
from src.services.live_price_cache import LivePriceCache
from src.services.observation_store import ObservationStore
from src.services.snapshot_aggregator import SnapshotAggregator
from src.services.snapshot_store import SnapshotStore
from src.utils.event_store import EventStore, EventType
from src.utils.logger import StructuredLogger
from src.utils.time_utils import as_aware_utc, end_of_day, utc_now
from src.utils.trace_context import bind_trace, trace_scope

SKIP_INSUFFICIENT_DATA = "insufficient_data"
SKIP_NO_USABLE_RATES = "no_usable_rates"
SKIP_VOLATILITY_GATE = "volatility_gate"

ANCHOR_OFFSETS_DAYS = (1, 7, 30)


@dataclass
class _ItemOutcome:
    item_id: str
    status: str
    excluded_missing_rate: int = 0
    outliers_removed: int = 0
    reason: str | None = None


class AggregationService:
    """
    Runs the nightly (or on-demand) aggregation over a set of items.

    Items are independent: they run on a bounded thread pool, one item's
    failure is recorded in the result and never aborts the others, and a
    cancel event stops the run between items. Only unreachable storage at
    the start of a run is fatal.
    """

    def __init__(
        self,
        observation_store: ObservationStore,
        snapshot_store: SnapshotStore,
        normalizer: CurrencyNormalizer,
        aggregator: SnapshotAggregator,
        cache: LivePriceCache | None = None,
        event_store: EventStore | None = None,
        worker_count: int = 4,
        default_window_days: int = 30,
        volatility_gate_pct: float = 30.0,
        low_liquidity_threshold: int = 5,
    ):
        self.observation_store = observation_store
        self.snapshot_store = snapshot_store
        self.normalizer = normalizer
        self.aggregator = aggregator
        self.cache = cache
        self.event_store = event_store
        self.worker_count = worker_count
        self.default_window_days = default_window_days
        self.volatility_gate_pct = volatility_gate_pct
        self.low_liquidity_threshold = low_liquidity_threshold
        self.logger = StructuredLogger("AggregationService")

    def run_aggregation(
        self,
        scope: str | Sequence[str] = "all",
        window_days: int | None = None,
        as_of: datetime | date | None = None,
        cancel_event: threading.Event | None = None,
        force: bool = False,
    ) -> AggregationResult:
        """
        Aggregate snapshots for ``scope`` as of ``as_of``.

        Args:
            scope: ``"all"`` for every item with observations, or a list of item ids
            window_days: Trailing window length (defaults to the configured window)
            as_of: End of the window; a date means the end of that UTC day (default: now)
            cancel_event: Set to stop the run before the next item starts
            force: Bypass the volatility gate for this run

        Returns:
            Run summary with counts and per-item errors

        Raises:
            StorageUnavailableError: If storage cannot be reached when the run starts
            ValueError: If ``window_days`` is not positive
        """
        if window_days is None:
            window_days = self.default_window_days
        if window_days <= 0:
            raise ValueError(f"window_days must be positive, got {window_days}")
        if as_of is None:
            as_of = utc_now()
        elif isinstance(as_of, datetime):
            as_of = as_aware_utc(as_of)
        else:
            as_of = end_of_day(as_of)
        cancel_event = cancel_event or threading.Event()

        with trace_scope() as run_id:
            return self._run(scope, window_days, as_of, cancel_event, run_id, force)

    def _run(
        self,
        scope: str | Sequence[str],
        window_days: int,
        as_of: datetime,
        cancel_event: threading.Event,
        run_id: str,
        force: bool,
    ) -> AggregationResult:
        start_time = time.time()
        snapshot_date = as_of.date()
        window_start = as_of - timedelta(days=window_days)

        try:
            self.snapshot_store.ping()
            if scope == "all":
                item_ids = self.observation_store.list_item_ids()
            else:
                item_ids = sorted(set(scope))
        except (StorageUnavailableError, SQLAlchemyError) as e:
            duration_ms = (time.time() - start_time) * 1000
            self.logger.critical(
                "Aggregation aborted: storage unavailable",
                context={"run_id": run_id, "duration_ms": duration_ms},
                exception=e,
            )
            self._add_event(
                run_id,
                EventType.AGGREGATION_FAILED,
                "Aggregation aborted: storage unavailable",
                {"reason": str(e)},
                duration_ms,
            )
            if isinstance(e, StorageUnavailableError):
                raise
            raise StorageUnavailableError(str(e)) from e

        self.logger.info(
            "Starting aggregation run",
            context={
                "run_id": run_id,
                "item_count": len(item_ids),
                "window_days": window_days,
                "snapshot_date": snapshot_date.isoformat(),
            },
        )
        self._add_event(
            run_id,
            EventType.AGGREGATION_START,
            "Starting aggregation run",
            {"item_count": len(item_ids), "window_days": window_days},
        )

        result = AggregationResult(run_id=run_id)
        with ThreadPoolExecutor(
            max_workers=self.worker_count, thread_name_prefix="aggregation"
        ) as executor:
            futures = [
                executor.submit(
                    bind_trace(self._aggregate_item),
                    item_id,
                    snapshot_date,
                    window_start,
                    as_of,
                    run_id,
                    cancel_event,
                    force,
                )
                for item_id in item_ids
            ]
            for future in as_completed(futures):
                self._merge(result, future.result())

        result.errors.sort(key=lambda error: error["item_id"])
        result.duration_ms = (time.time() - start_time) * 1000
        summary = result.to_dict()
        summary.pop("errors")
        summary["error_count"] = len(result.errors)

        self.logger.info("Aggregation run complete", context=summary)
        self._add_event(
            run_id,
            EventType.AGGREGATION_COMPLETE,
            "Aggregation run cancelled" if result.cancelled else "Aggregation run complete",
            summary,
            result.duration_ms,
        )
        return result

    def _merge(self, result: AggregationResult, outcome: _ItemOutcome) -> None:
        if outcome.status == "cancelled":
            result.cancelled = True
            return
        result.processed += 1
        result.excluded_missing_rate += outcome.excluded_missing_rate
        result.outliers_removed += outcome.outliers_removed
        if outcome.status in ("created", "gated"):
            result.created += 1
        if outcome.status == "gated":
            result.volatility_gated += 1
        elif outcome.status == "skipped":
            result.skipped_insufficient_data += 1
        elif outcome.status == "error":
            result.errors.append({"item_id": outcome.item_id, "reason": outcome.reason or ""})

    def _aggregate_item(
        self,
        item_id: str,
        snapshot_date: date,
        window_start: datetime,
        window_end: datetime,
        run_id: str,
        cancel_event: threading.Event,
        force: bool = False,
    ) -> _ItemOutcome:
        if cancel_event.is_set():
            return _ItemOutcome(item_id, "cancelled")

        outcome = _ItemOutcome(item_id, "created")
        logger = self.logger.bind(item_id=item_id)
        try:
            observations = self.observation_store.observations_in_window(
                item_id, window_start, window_end
            )
            amounts, outcome.excluded_missing_rate = self.normalizer.normalize_many(observations)
            secondary_samples = self.aggregator.collect_secondary_samples(observations)
            snapshot, filter_result = self.aggregator.build_snapshot(
                item_id, snapshot_date, amounts, secondary_samples
            )
            outcome.outliers_removed = filter_result.removed_count

            if snapshot is None:
                skip_reason = (
                    SKIP_NO_USABLE_RATES
                    if observations and outcome.excluded_missing_rate == len(observations)
                    else SKIP_INSUFFICIENT_DATA
                )
                outcome.status = "skipped"
                logger.info(
                    "Skipping item: no usable samples",
                    context={
                        "skip_reason": skip_reason,
                        "observation_count": len(observations),
                    },
                )
                self.snapshot_store.record_run_log(
                    item_id,
                    snapshot_date,
                    run_id,
                    sample_count=len(observations),
                    excluded_missing_rate=outcome.excluded_missing_rate,
                    skip_reason=skip_reason,
                )
                return outcome

            previous = self.snapshot_store.latest_on_or_before(
                item_id, snapshot_date - timedelta(days=1)
            )
            change_pct = self._change_pct(previous, snapshot)
            gated = not force and self._is_gated(change_pct, snapshot.liquidity_count)

            self.snapshot_store.upsert(item_id, snapshot_date, snapshot)
            self.observation_store.mark_outliers(
                item_id,
                outlier_ids=[a.observation_id for a in filter_result.removed],
                inlier_ids=[a.observation_id for a in filter_result.kept],
            )
            self.snapshot_store.record_run_log(
                item_id,
                snapshot_date,
                run_id,
                sample_count=len(observations),
                excluded_missing_rate=outcome.excluded_missing_rate,
                outliers_removed=outcome.outliers_removed,
                median_reference=snapshot.median_reference,
                skip_reason=SKIP_VOLATILITY_GATE if gated else None,
                was_created=True,
            )

            if gated:
                # Live anchors keep the previous baseline until the move is reviewed
                outcome.status = "gated"
                review = {
                    "item_id": item_id,
                    "previous_median": previous.median_reference,
                    "new_median": snapshot.median_reference,
                    "change_pct": round(change_pct, 2),
                    "liquidity_count": snapshot.liquidity_count,
                }
                logger.warning("Volatility gate held back anchor refresh", context=review)
                self._add_event(
                    run_id,
                    EventType.VOLATILITY_GATED,
                    f"Volatility gate: {change_pct:.1f}% change with low liquidity",
                    review,
                )
                return outcome

            if self.cache is not None:
                self.refresh_anchors(item_id, snapshot_date)

            logger.debug(
                "Snapshot written",
                context={
                    "median_reference": snapshot.median_reference,
                    "liquidity_count": snapshot.liquidity_count,
                    "confidence": snapshot.confidence,
                },
            )
            return outcome
        except PersistenceError as e:
            outcome.status = "error"
            outcome.reason = e.reason
        except Exception as e:
            outcome.status = "error"
            outcome.reason = f"{type(e).__name__}: {e}"

        logger.error("Aggregation failed for item", context={"reason": outcome.reason})
        self._add_event(
            run_id,
            EventType.AGGREGATION_ITEM_ERROR,
            "Aggregation failed for item",
            {"item_id": item_id, "reason": outcome.reason},
        )
        return outcome

    @staticmethod
    def _change_pct(previous: DailySnapshot | None, snapshot: DailySnapshot) -> float | None:
        if previous is None or previous.median_reference <= 0:
            return None
        return (snapshot.median_reference - previous.median_reference) / previous.median_reference * 100

    def _is_gated(self, change_pct: float | None, liquidity_count: int) -> bool:
        """Large day-over-day moves on thin samples are held for review."""
        return (
            change_pct is not None
            and abs(change_pct) > self.volatility_gate_pct
            and liquidity_count < self.low_liquidity_threshold
        )

    def refresh_anchors(self, item_id: str, as_of_date: date) -> PriceAnchors:
        """
        Load 24h/7d/30d anchors from stored snapshots into the live cache.

        Each anchor is the median of the latest snapshot dated at or before
        ``as_of_date`` minus 1, 7 and 30 days.
        """
        prices = []
        for days in ANCHOR_OFFSETS_DAYS:
            snapshot = self.snapshot_store.latest_on_or_before(
                item_id, as_of_date - timedelta(days=days)
            )
            prices.append(snapshot.median_reference if snapshot else None)

        anchors = PriceAnchors(
            price_24h_ago=prices[0],
            price_7d_ago=prices[1],
            price_30d_ago=prices[2],
            refreshed_at=utc_now(),
        )
        if self.cache is not None:
            self.cache.refresh_anchors(item_id, anchors)
        return anchors

    def _add_event(
        self,
        run_id: str,
        event_type: str,
        message: str,
        context: dict,
        duration_ms: float | None = None,
    ) -> None:
        if self.event_store:
            self.event_store.add_event(
                trace_id=run_id,
                event_type=event_type,
                component="AggregationService",
                message=message,
                context=context,
                duration_ms=duration_ms,
            )
