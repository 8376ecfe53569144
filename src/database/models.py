"""SQLAlchemy database models for persistent storage."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PriceObservationRecord(Base):
    """Raw sale price observation as submitted by an ingestion collaborator."""
    __tablename__ = "price_observations"
    __table_args__ = (
        UniqueConstraint("source", "source_event_id", name="uq_observation_source_event"),
        Index("ix_observation_item_time", "item_id", "observed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    source_event_id = Column(String, nullable=True)  # NULLs never collide
    raw_amount = Column(Float, nullable=False)
    raw_currency = Column(String(3), nullable=False)
    observed_at = Column(DateTime, nullable=False)  # naive UTC
    is_outlier = Column(Boolean, nullable=False, default=False)
    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ExchangeRateRecord(Base):
    """Point-in-time exchange rate, 1 base = rate quote."""
    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint("base_currency", "quote_currency", "as_of", name="uq_rate_pair_as_of"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(3), nullable=False)
    quote_currency = Column(String(3), nullable=False)
    rate = Column(Float, nullable=False)
    as_of = Column(DateTime, nullable=False, index=True)  # naive UTC


class DailySnapshotRecord(Base):
    """One aggregated price row per item per calendar day."""
    __tablename__ = "daily_snapshots"
    __table_args__ = (
        UniqueConstraint("item_id", "snapshot_date", name="uq_snapshot_item_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)
    reference_currency = Column(String(3), nullable=False)
    median_reference = Column(Float, nullable=False)
    median_secondary = Column(Text, nullable=True)  # JSON object {currency: median}
    low = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    liquidity_count = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)
    days_covered = Column(Integer, nullable=False)
    contributing_sources = Column(Text, nullable=True)  # JSON list
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class AggregationLogRecord(Base):
    """Per item, per run date outcome of the aggregation batch."""
    __tablename__ = "aggregation_log"
    __table_args__ = (
        UniqueConstraint("item_id", "run_date", name="uq_aggregation_log_item_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False, index=True)
    run_date = Column(Date, nullable=False)
    run_id = Column(String, nullable=True)
    sample_count = Column(Integer, nullable=False, default=0)
    excluded_missing_rate = Column(Integer, nullable=False, default=0)
    outliers_removed = Column(Integer, nullable=False, default=0)
    median_reference = Column(Float, nullable=True)
    was_created = Column(Boolean, nullable=False, default=False)
    skip_reason = Column(String, nullable=True)  # "insufficient_data", "no_usable_rates", "volatility_gate"
    logged_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
