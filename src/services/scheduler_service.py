"""Scheduler service for the nightly aggregation and the live price poll."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.models.price_data import AggregationResult
from src.services.errors import StorageUnavailableError, UpstreamUnavailableError
from src.services.price_engine import PriceEngine
from src.utils.event_store import EventType
from src.utils.logger import StructuredLogger
from src.utils.trace_context import clear_trace, create_trace

logger = logging.getLogger(__name__)
structured_logger = StructuredLogger("SchedulerService")


class SchedulerService:
    """Runs the price engine's recurring jobs on a background scheduler."""

    def __init__(self, engine: PriceEngine, timezone: str = "UTC"):
        """
        Initialize scheduler service.

        Args:
            engine: Price engine whose jobs are scheduled
            timezone: Time zone the aggregation time is interpreted in
        """
        self.scheduler = BackgroundScheduler(timezone=timezone)
        self.engine = engine
        self.timezone = timezone
        self.is_running = False

    def schedule_aggregation(self, aggregation_time: str) -> None:
        """
        Schedule the daily aggregation run.

        Args:
            aggregation_time: Time of day for the run (HH:MM format)

        Raises:
            ValueError: If time format is invalid
        """
        self._validate_time_format(aggregation_time)
        hour, minute = map(int, aggregation_time.split(":"))

        self.scheduler.add_job(
            self.execute_aggregation,
            CronTrigger(hour=hour, minute=minute, timezone=self.timezone),
            id="daily_aggregation",
            name="Daily Price Snapshot Aggregation",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Scheduled daily aggregation at {aggregation_time} {self.timezone}")

    def schedule_live_poll(self, interval_seconds: int) -> bool:
        """
        Schedule the fixed-interval live price poll.

        Returns:
            False when no live feed is configured and nothing was scheduled
        """
        if self.engine.poller is None:
            logger.info("No live feed configured; live price polling disabled")
            return False
        if interval_seconds <= 0:
            raise ValueError(f"Invalid poll interval: {interval_seconds}")

        self.scheduler.add_job(
            self.execute_live_poll,
            IntervalTrigger(seconds=interval_seconds),
            id="live_price_poll",
            name="Live Price Poll",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled live price poll every {interval_seconds}s")
        return True

    def start(self) -> None:
        if not self.is_running:
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started")

    def execute_aggregation(self) -> AggregationResult | None:
        """
        Refresh exchange rates, then aggregate every item.

        Rates are fetched before the batch starts; an unreachable rates API
        only means the batch uses the rates already stored.
        """
        trace_id = create_trace()
        try:
            if self.engine.rate_fetcher is not None:
                try:
                    self.engine.rate_fetcher.fetch_rates()
                except UpstreamUnavailableError as e:
                    structured_logger.warning(
                        "Rate refresh failed; aggregating with stored rates",
                        context={"trace_id": trace_id, "reason": e.reason},
                    )
                    self.engine.event_store.add_event(
                        trace_id=trace_id,
                        event_type=EventType.UPSTREAM_UNAVAILABLE,
                        component="SchedulerService",
                        message="Exchange rate refresh failed",
                        context={"upstream": e.upstream, "reason": e.reason},
                    )

            return self.engine.run_aggregation("all")
        except StorageUnavailableError as e:
            structured_logger.error(
                "Scheduled aggregation aborted: storage unavailable",
                context={"trace_id": trace_id},
                exception=e,
            )
            return None
        finally:
            clear_trace()

    def execute_live_poll(self) -> int:
        if self.engine.poller is None:
            return 0
        return self.engine.poller.poll_once()

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.is_running:
            self.scheduler.shutdown()
            self.is_running = False
            logger.info("Scheduler stopped")

    def _validate_time_format(self, time_str: str) -> None:
        """
        Validate time format (HH:MM).

        Args:
            time_str: Time string to validate

        Raises:
            ValueError: If format is invalid
        """
        try:
            parts = time_str.split(":")
            if len(parts) != 2:
                raise ValueError(f"Invalid time format: {time_str}. Use HH:MM")
            hour, minute = int(parts[0]), int(parts[1])
            if not (0 <= hour < 24 and 0 <= minute < 60):
                raise ValueError(f"Invalid time values: {time_str}")
        except (ValueError, AttributeError) as e:
            raise ValueError(f"Invalid time format: {e}")
