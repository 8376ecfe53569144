"""Configuration management for the application."""

import os
import re
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _parse_currency_list(raw: str) -> list[str]:
    return [code.strip().upper() for code in raw.split(",") if code.strip()]


@dataclass
class CurrencyConfig:
    """Currency normalization configuration."""

    reference_currency: str = "USD"
    secondary_currencies: list[str] = field(default_factory=list)
    rates_api_url: str | None = None
    rates_api_timeout: int = 10


@dataclass
class AggregationConfig:
    """Daily snapshot aggregation configuration."""

    window_days: int = 30
    mad_multiplier: float = 3.0
    min_samples_for_filter: int = 5
    worker_count: int = 4
    volatility_gate_pct: float = 30.0
    low_liquidity_threshold: int = 5


@dataclass
class LiveCacheConfig:
    """Live price cache configuration."""

    just_changed_window_ms: int = 500
    poll_interval_seconds: int = 10
    stale_after_seconds: int = 300
    live_feed_url: str | None = None
    subscriber_queue_size: int = 100


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    aggregation_time: str = "03:00"  # HH:MM format
    timezone: str = "UTC"
    enabled: bool = False


@dataclass
class DatabaseConfig:
    """Database configuration."""

    database_url: str
    echo: bool = False


class Config:
    """Main application configuration."""

    def __init__(self):
        self.currency = CurrencyConfig(
            reference_currency=os.getenv("REFERENCE_CURRENCY", "USD").upper(),
            secondary_currencies=_parse_currency_list(os.getenv("SECONDARY_CURRENCIES", "EUR,TRY")),
            rates_api_url=os.getenv("RATES_API_URL"),
            rates_api_timeout=int(os.getenv("RATES_API_TIMEOUT", "10")),
        )

        self.aggregation = AggregationConfig(
            window_days=int(os.getenv("AGGREGATION_WINDOW_DAYS", "30")),
            mad_multiplier=float(os.getenv("OUTLIER_MAD_MULTIPLIER", "3.0")),
            min_samples_for_filter=int(os.getenv("OUTLIER_MIN_SAMPLES", "5")),
            worker_count=int(os.getenv("AGGREGATION_WORKERS", "4")),
            volatility_gate_pct=float(os.getenv("VOLATILITY_GATE_PCT", "30")),
            low_liquidity_threshold=int(os.getenv("LOW_LIQUIDITY_THRESHOLD", "5")),
        )

        self.live = LiveCacheConfig(
            just_changed_window_ms=int(os.getenv("JUST_CHANGED_WINDOW_MS", "500")),
            poll_interval_seconds=int(os.getenv("LIVE_POLL_INTERVAL_SECONDS", "10")),
            stale_after_seconds=int(os.getenv("LIVE_STALE_AFTER_SECONDS", "300")),
            live_feed_url=os.getenv("LIVE_FEED_URL"),
            subscriber_queue_size=int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100")),
        )

        self.scheduler = SchedulerConfig(
            aggregation_time=os.getenv("AGGREGATION_TIME", "03:00"),
            timezone=os.getenv("TIMEZONE", "UTC"),
            enabled=os.getenv("SCHEDULER_ENABLED", "false").lower() == "true",
        )

        self.database = DatabaseConfig(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./market_prices.db"),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )

    def validate(self) -> bool:
        """
        Validate configuration.

        Returns:
            True if configuration is valid

        Raises:
            ValueError if configuration is invalid
        """
        for code in [self.currency.reference_currency, *self.currency.secondary_currencies]:
            if not _CURRENCY_RE.match(code):
                raise ValueError(f"Invalid currency code: {code!r}")
        if self.currency.reference_currency in self.currency.secondary_currencies:
            raise ValueError("REFERENCE_CURRENCY must not be listed in SECONDARY_CURRENCIES")

        if self.aggregation.window_days <= 0:
            raise ValueError("AGGREGATION_WINDOW_DAYS must be positive")
        if self.aggregation.mad_multiplier <= 0:
            raise ValueError("OUTLIER_MAD_MULTIPLIER must be positive")
        if self.aggregation.min_samples_for_filter < 1:
            raise ValueError("OUTLIER_MIN_SAMPLES must be at least 1")
        if self.aggregation.worker_count < 1:
            raise ValueError("AGGREGATION_WORKERS must be at least 1")
        if self.aggregation.volatility_gate_pct <= 0:
            raise ValueError("VOLATILITY_GATE_PCT must be positive")
        if self.aggregation.low_liquidity_threshold < 1:
            raise ValueError("LOW_LIQUIDITY_THRESHOLD must be at least 1")

        if self.live.just_changed_window_ms <= 0:
            raise ValueError("JUST_CHANGED_WINDOW_MS must be positive")
        if self.live.poll_interval_seconds <= 0:
            raise ValueError("LIVE_POLL_INTERVAL_SECONDS must be positive")

        # Validate time format
        time_str = self.scheduler.aggregation_time
        try:
            parts = time_str.split(":")
            if len(parts) != 2:
                raise ValueError(f"Invalid time format: {time_str}. Use HH:MM")
            hour, minute = int(parts[0]), int(parts[1])
            if not (0 <= hour < 24 and 0 <= minute < 60):
                raise ValueError(f"Invalid time values: {time_str}")
        except (ValueError, AttributeError) as e:
            raise ValueError(f"Invalid scheduler time configuration: {e}") from e

        return True


# Global config instance
config = Config()
