"""Price observation, snapshot and live price models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal


class PriceSource(str, Enum):
    """Marketplaces and feeds that price observations originate from."""

    CARDMARKET = "cardmarket"
    EBAY = "ebay"
    PRICECHARTING = "pricecharting"
    TCGPLAYER = "tcgplayer"
    JUSTTCG = "justtcg"
    TRANSACTION = "transaction"
    MANUAL = "manual"


@dataclass(frozen=True)
class PriceObservation:
    """A single sale price seen on a marketplace, in its native currency."""

    item_id: str
    source: PriceSource
    raw_amount: float
    raw_currency: str
    observed_at: datetime
    is_outlier: bool = False
    id: int | None = None
    source_event_id: str | None = None


@dataclass(frozen=True)
class ReferenceAmount:
    """An observation converted into the reference currency."""

    item_id: str
    amount: float
    observed_at: datetime
    source: PriceSource
    observation_id: int | None = None


@dataclass(frozen=True)
class ExchangeRate:
    """Point-in-time rate: 1 unit of base_currency equals ``rate`` quote_currency."""

    base_currency: str
    quote_currency: str
    rate: float
    as_of: datetime

    @property
    def currency_pair(self) -> str:
        return f"{self.base_currency}/{self.quote_currency}"


@dataclass
class FilterResult:
    """Outcome of running the outlier filter over one sample set."""

    kept: list[Any] = field(default_factory=list)
    removed: list[Any] = field(default_factory=list)
    median: float | None = None
    mad: float | None = None
    filtered: bool = False

    @property
    def removed_count(self) -> int:
        return len(self.removed)


@dataclass(frozen=True)
class DailySnapshot:
    """Aggregated price for one item on one calendar day."""

    item_id: str
    snapshot_date: date
    median_reference: float
    low: float
    high: float
    liquidity_count: int
    confidence: float
    days_covered: int
    contributing_sources: tuple[str, ...] = ()
    median_secondary_currencies: dict[str, float] = field(default_factory=dict)
    reference_currency: str = "USD"

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "snapshot_date": self.snapshot_date.isoformat(),
            "median_reference": self.median_reference,
            "median_secondary_currencies": dict(self.median_secondary_currencies),
            "reference_currency": self.reference_currency,
            "low": self.low,
            "high": self.high,
            "liquidity_count": self.liquidity_count,
            "confidence": self.confidence,
            "days_covered": self.days_covered,
            "contributing_sources": list(self.contributing_sources),
        }


@dataclass(frozen=True)
class PriceAnchors:
    """Baseline prices for percentage changes, refreshed by the aggregation batch."""

    price_24h_ago: float | None = None
    price_7d_ago: float | None = None
    price_30d_ago: float | None = None
    refreshed_at: datetime | None = None


PriceStatus = Literal["stable", "updating", "just_changed"]


@dataclass(frozen=True)
class LivePriceState:
    """Read view of the latest known price for one item."""

    item_id: str
    current_price: float
    previous_price: float | None
    change_24h_pct: float | None
    change_7d_pct: float | None
    change_30d_pct: float | None
    last_updated_at: datetime
    just_changed: bool
    status: PriceStatus
    source: str | None = None
    is_stale: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "current_price": self.current_price,
            "previous_price": self.previous_price,
            "change_24h_pct": self.change_24h_pct,
            "change_7d_pct": self.change_7d_pct,
            "change_30d_pct": self.change_30d_pct,
            "last_updated_at": self.last_updated_at.isoformat(),
            "just_changed": self.just_changed,
            "status": self.status,
            "source": self.source,
            "is_stale": self.is_stale,
        }


@dataclass(frozen=True)
class PriceChangeEvent:
    """Notification pushed to subscribers when an item's live price changes."""

    item_id: str
    current_price: float
    previous_price: float | None
    change_pct: float | None
    just_changed: bool
    emitted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "current_price": self.current_price,
            "previous_price": self.previous_price,
            "change_pct": self.change_pct,
            "just_changed": self.just_changed,
            "emitted_at": self.emitted_at.isoformat(),
        }


@dataclass
class AggregationResult:
    """Summary returned by a batch aggregation run."""

    run_id: str
    processed: int = 0
    created: int = 0
    skipped_insufficient_data: int = 0
    excluded_missing_rate: int = 0
    outliers_removed: int = 0
    volatility_gated: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "processed": self.processed,
            "created": self.created,
            "skipped_insufficient_data": self.skipped_insufficient_data,
            "excluded_missing_rate": self.excluded_missing_rate,
            "outliers_removed": self.outliers_removed,
            "volatility_gated": self.volatility_gated,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
        }
