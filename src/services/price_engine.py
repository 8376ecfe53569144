"""Price engine facade wiring ingestion, aggregation and the live cache."""

import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime

from sqlalchemy.orm import sessionmaker

from src.models.price_data import AggregationResult, DailySnapshot, LivePriceState, PriceSource
from src.services.aggregation_service import AggregationService
from src.services.confidence_scorer import ConfidenceScorer
from src.services.currency_normalizer import CurrencyNormalizer
from src.services.exchange_rates import (
    DatabaseRateTable,
    ExchangeRateFetcher,
    ExchangeRateProvider,
)
from src.services.live_price_cache import LivePriceCache
from src.services.observation_store import ObservationStore
from src.services.outlier_filter import OutlierFilter
from src.services.price_broadcaster import PriceChangeBroadcaster, Subscription
from src.services.price_feed_poller import HttpLivePriceSource, LivePricePoller
from src.services.snapshot_aggregator import SnapshotAggregator
from src.services.snapshot_store import SnapshotStore
from src.utils.config import Config
from src.utils.event_store import EventStore
from src.utils.time_utils import utc_now


class PriceEngine:
    """Entry points used by collaborators: ingestion, batch trigger, reads, subscriptions."""

    def __init__(
        self,
        observation_store: ObservationStore,
        snapshot_store: SnapshotStore,
        aggregation_service: AggregationService,
        cache: LivePriceCache,
        broadcaster: PriceChangeBroadcaster,
        rate_provider: ExchangeRateProvider,
        event_store: EventStore,
        poller: LivePricePoller | None = None,
        rate_fetcher: ExchangeRateFetcher | None = None,
    ):
        self.observation_store = observation_store
        self.snapshot_store = snapshot_store
        self.aggregation_service = aggregation_service
        self.cache = cache
        self.broadcaster = broadcaster
        self.rate_provider = rate_provider
        self.event_store = event_store
        self.poller = poller
        self.rate_fetcher = rate_fetcher
        self.confidence_scorer = aggregation_service.aggregator.confidence_scorer

    def submit_observation(
        self,
        item_id: str,
        source: PriceSource | str,
        amount: float,
        currency: str,
        observed_at: datetime,
        source_event_id: str | None = None,
    ) -> bool:
        return self.observation_store.submit_observation(
            item_id, source, amount, currency, observed_at, source_event_id
        )

    def run_aggregation(
        self,
        scope: str | Sequence[str] = "all",
        window_days: int | None = None,
        as_of: datetime | date | None = None,
        cancel_event: threading.Event | None = None,
        force: bool = False,
    ) -> AggregationResult:
        return self.aggregation_service.run_aggregation(
            scope, window_days, as_of, cancel_event, force
        )

    def get_snapshot_history(
        self, item_id: str, start: date | None = None, end: date | None = None
    ) -> list[DailySnapshot]:
        """Snapshots ordered by date; an empty list means no data yet."""
        return self.snapshot_store.history(item_id, start, end)

    def get_live_price(self, item_id: str) -> LivePriceState | None:
        return self.cache.get(item_id)

    def get_live_prices(self, item_ids: Iterable[str]) -> dict[str, LivePriceState]:
        return self.cache.get_many(item_ids)

    def subscribe_price_changes(self, item_ids: Iterable[str]) -> Subscription:
        return self.broadcaster.subscribe(item_ids)

    def apply_live_price(
        self, item_id: str, price: float, source: str | None = None
    ) -> LivePriceState:
        """Push producer entry point (trusted feed or completed transaction)."""
        state, _ = self.cache.apply_update(item_id, price, source)
        return state

    def get_rate(self, currency_pair: str, as_of: datetime) -> float | None:
        return self.rate_provider.get_rate(currency_pair, as_of)


def build_price_engine(
    cfg: Config,
    session_factory: sessionmaker,
    event_store: EventStore | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> PriceEngine:
    """Assemble a PriceEngine from configuration."""
    event_store = event_store or EventStore()

    observation_store = ObservationStore(session_factory)
    snapshot_store = SnapshotStore(session_factory)
    rate_table = DatabaseRateTable(session_factory)

    broadcaster = PriceChangeBroadcaster(max_queue=cfg.live.subscriber_queue_size)
    cache = LivePriceCache(
        broadcaster,
        just_changed_window_ms=cfg.live.just_changed_window_ms,
        stale_after_seconds=cfg.live.stale_after_seconds,
        clock=clock,
        event_store=event_store,
    )

    aggregator = SnapshotAggregator(
        outlier_filter=OutlierFilter(
            multiplier=cfg.aggregation.mad_multiplier,
            min_samples=cfg.aggregation.min_samples_for_filter,
        ),
        confidence_scorer=ConfidenceScorer(),
        reference_currency=cfg.currency.reference_currency,
        secondary_currencies=cfg.currency.secondary_currencies,
    )
    aggregation_service = AggregationService(
        observation_store,
        snapshot_store,
        CurrencyNormalizer(rate_table, cfg.currency.reference_currency),
        aggregator,
        cache=cache,
        event_store=event_store,
        worker_count=cfg.aggregation.worker_count,
        default_window_days=cfg.aggregation.window_days,
        volatility_gate_pct=cfg.aggregation.volatility_gate_pct,
        low_liquidity_threshold=cfg.aggregation.low_liquidity_threshold,
    )

    poller = None
    if cfg.live.live_feed_url:
        poller = LivePricePoller(
            HttpLivePriceSource(cfg.live.live_feed_url),
            cache,
            event_store=event_store,
        )

    rate_fetcher = None
    if cfg.currency.rates_api_url:
        rate_fetcher = ExchangeRateFetcher(
            cfg.currency.rates_api_url,
            rate_table,
            reference_currency=cfg.currency.reference_currency,
            currencies=cfg.currency.secondary_currencies,
            timeout=cfg.currency.rates_api_timeout,
        )

    return PriceEngine(
        observation_store=observation_store,
        snapshot_store=snapshot_store,
        aggregation_service=aggregation_service,
        cache=cache,
        broadcaster=broadcaster,
        rate_provider=rate_table,
        event_store=event_store,
        poller=poller,
        rate_fetcher=rate_fetcher,
    )
