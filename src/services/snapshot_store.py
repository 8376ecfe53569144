"""Snapshot store: one row per (item, day), overwritten on re-aggregation."""

import json
from collections.abc import Sequence
from datetime import date

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.database.models import AggregationLogRecord, DailySnapshotRecord
from src.models.price_data import DailySnapshot
from src.services.errors import PersistenceError, StorageUnavailableError
from src.utils.logger import StructuredLogger


def _to_snapshot(record: DailySnapshotRecord) -> DailySnapshot:
    secondary = {}
    if record.median_secondary:
        try:
            secondary = {k: float(v) for k, v in json.loads(record.median_secondary).items()}
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
            secondary = {}

    sources: tuple[str, ...] = ()
    if record.contributing_sources:
        try:
            sources = tuple(json.loads(record.contributing_sources))
        except (json.JSONDecodeError, TypeError):
            sources = ()

    return DailySnapshot(
        item_id=record.item_id,
        snapshot_date=record.snapshot_date,
        median_reference=record.median_reference,
        low=record.low,
        high=record.high,
        liquidity_count=record.liquidity_count,
        confidence=record.confidence,
        days_covered=record.days_covered,
        contributing_sources=sources,
        median_secondary_currencies=secondary,
        reference_currency=record.reference_currency,
    )


def period_change_pct(snapshots: Sequence[DailySnapshot]) -> float | None:
    """
    Percentage change from the first to the last snapshot in a range.

    Returns None with fewer than two snapshots or a zero starting median.
    """
    if len(snapshots) < 2:
        return None
    first = snapshots[0].median_reference
    last = snapshots[-1].median_reference
    if not first:
        return None
    return (last - first) / first * 100


class SnapshotStore:
    """Persists daily snapshots and the per-run aggregation log."""

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker; each call opens its own session
        """
        self.session_factory = session_factory
        self.logger = StructuredLogger("SnapshotStore")

    def ping(self) -> None:
        """
        Check that storage is reachable.

        Raises:
            StorageUnavailableError: If a trivial query cannot be executed
        """
        try:
            with self.session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Snapshot storage unreachable: {e}") from e

    def upsert(self, item_id: str, snapshot_date: date, snapshot: DailySnapshot) -> None:
        """
        Write the snapshot for ``(item_id, snapshot_date)``, replacing any existing row.

        Raises:
            PersistenceError: If the write fails; nothing is partially written
        """
        if snapshot.item_id != item_id or snapshot.snapshot_date != snapshot_date:
            raise ValueError("snapshot does not match the (item_id, snapshot_date) key")

        values = {
            "reference_currency": snapshot.reference_currency,
            "median_reference": snapshot.median_reference,
            "median_secondary": json.dumps(snapshot.median_secondary_currencies, sort_keys=True),
            "low": snapshot.low,
            "high": snapshot.high,
            "liquidity_count": snapshot.liquidity_count,
            "confidence": snapshot.confidence,
            "days_covered": snapshot.days_covered,
            "contributing_sources": json.dumps(list(snapshot.contributing_sources)),
        }

        session = self.session_factory()
        try:
            record = (
                session.query(DailySnapshotRecord)
                .filter_by(item_id=item_id, snapshot_date=snapshot_date)
                .one_or_none()
            )
            if record is None:
                session.add(DailySnapshotRecord(item_id=item_id, snapshot_date=snapshot_date, **values))
            else:
                for column, value in values.items():
                    setattr(record, column, value)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(item_id, str(e)) from e
        finally:
            session.close()

    def get(self, item_id: str, snapshot_date: date) -> DailySnapshot | None:
        with self.session_factory() as session:
            record = (
                session.query(DailySnapshotRecord)
                .filter_by(item_id=item_id, snapshot_date=snapshot_date)
                .one_or_none()
            )
            return _to_snapshot(record) if record else None

    def history(
        self,
        item_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DailySnapshot]:
        """Snapshots for an item within ``[start, end]``, oldest first."""
        with self.session_factory() as session:
            query = session.query(DailySnapshotRecord).filter(
                DailySnapshotRecord.item_id == item_id
            )
            if start is not None:
                query = query.filter(DailySnapshotRecord.snapshot_date >= start)
            if end is not None:
                query = query.filter(DailySnapshotRecord.snapshot_date <= end)
            records = query.order_by(DailySnapshotRecord.snapshot_date.asc()).all()
            return [_to_snapshot(r) for r in records]

    def latest_on_or_before(self, item_id: str, day: date) -> DailySnapshot | None:
        """Most recent snapshot dated ``day`` or earlier (anchor lookup)."""
        with self.session_factory() as session:
            record = (
                session.query(DailySnapshotRecord)
                .filter(
                    DailySnapshotRecord.item_id == item_id,
                    DailySnapshotRecord.snapshot_date <= day,
                )
                .order_by(DailySnapshotRecord.snapshot_date.desc())
                .first()
            )
            return _to_snapshot(record) if record else None

    def record_run_log(
        self,
        item_id: str,
        run_date: date,
        run_id: str | None,
        sample_count: int,
        excluded_missing_rate: int = 0,
        outliers_removed: int = 0,
        median_reference: float | None = None,
        skip_reason: str | None = None,
        was_created: bool | None = None,
    ) -> None:
        """
        Upsert the aggregation log row for ``(item_id, run_date)``.

        Raises:
            PersistenceError: If the write fails
        """
        session = self.session_factory()
        try:
            record = (
                session.query(AggregationLogRecord)
                .filter_by(item_id=item_id, run_date=run_date)
                .one_or_none()
            )
            if record is None:
                record = AggregationLogRecord(item_id=item_id, run_date=run_date)
                session.add(record)
            record.run_id = run_id
            record.sample_count = sample_count
            record.excluded_missing_rate = excluded_missing_rate
            record.outliers_removed = outliers_removed
            record.median_reference = median_reference
            record.was_created = skip_reason is None if was_created is None else was_created
            record.skip_reason = skip_reason
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(item_id, str(e)) from e
        finally:
            session.close()

    def get_run_log(self, item_id: str, run_date: date) -> AggregationLogRecord | None:
        with self.session_factory() as session:
            record = (
                session.query(AggregationLogRecord)
                .filter_by(item_id=item_id, run_date=run_date)
                .one_or_none()
            )
            if record is not None:
                session.expunge(record)
            return record
