"""Tests for the snapshot store."""

from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.database.models import DailySnapshotRecord
from src.models.price_data import DailySnapshot
from src.services.errors import PersistenceError, StorageUnavailableError
from src.services.snapshot_store import SnapshotStore, period_change_pct


def _snapshot(day: date, median_price: float = 10.0, item_id: str = "item-1") -> DailySnapshot:
    return DailySnapshot(
        item_id=item_id,
        snapshot_date=day,
        median_reference=median_price,
        low=median_price - 1,
        high=median_price + 1,
        liquidity_count=6,
        confidence=0.8,
        days_covered=4,
        contributing_sources=("cardmarket", "ebay"),
        median_secondary_currencies={"EUR": median_price * 0.9},
    )


class TestUpsert:
    """Idempotent upsert keyed by (item_id, snapshot_date)."""

    def test_round_trips_all_fields(self, snapshot_store):
        snapshot = _snapshot(date(2024, 6, 1))
        snapshot_store.upsert("item-1", date(2024, 6, 1), snapshot)

        assert snapshot_store.get("item-1", date(2024, 6, 1)) == snapshot

    def test_second_upsert_overwrites_instead_of_appending(self, snapshot_store, session_factory):
        day = date(2024, 6, 1)
        snapshot_store.upsert("item-1", day, _snapshot(day, 10.0))
        snapshot_store.upsert("item-1", day, _snapshot(day, 12.0))

        with session_factory() as session:
            rows = session.query(DailySnapshotRecord).filter_by(item_id="item-1").all()
        assert len(rows) == 1
        assert snapshot_store.get("item-1", day).median_reference == 12.0

    def test_key_mismatch_rejected(self, snapshot_store):
        with pytest.raises(ValueError):
            snapshot_store.upsert("item-2", date(2024, 6, 1), _snapshot(date(2024, 6, 1)))

    def test_write_failure_raises_persistence_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("UPDATE", {}, Exception("disk I/O error"))
        store = SnapshotStore(lambda: session)

        with pytest.raises(PersistenceError) as exc_info:
            store.upsert("item-1", date(2024, 6, 1), _snapshot(date(2024, 6, 1)))

        assert exc_info.value.item_id == "item-1"
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestHistory:
    """Ordered reads over a date range."""

    def test_history_is_ascending_and_bounded(self, snapshot_store):
        for day in (5, 1, 3, 9):
            snapshot_store.upsert("item-1", date(2024, 6, day), _snapshot(date(2024, 6, day), day))
        snapshot_store.upsert("item-2", date(2024, 6, 4), _snapshot(date(2024, 6, 4), item_id="item-2"))

        history = snapshot_store.history("item-1", date(2024, 6, 2), date(2024, 6, 9))

        assert [s.snapshot_date.day for s in history] == [3, 5, 9]

    def test_history_of_unknown_item_is_empty(self, snapshot_store):
        assert snapshot_store.history("missing") == []

    def test_latest_on_or_before(self, snapshot_store):
        for day in (1, 5):
            snapshot_store.upsert("item-1", date(2024, 6, day), _snapshot(date(2024, 6, day), day))

        assert snapshot_store.latest_on_or_before("item-1", date(2024, 6, 4)).median_reference == 1
        assert snapshot_store.latest_on_or_before("item-1", date(2024, 6, 5)).median_reference == 5
        assert snapshot_store.latest_on_or_before("item-1", date(2024, 5, 31)) is None


class TestPeriodChange:
    def test_first_versus_last(self):
        snapshots = [_snapshot(date(2024, 6, 1), 10), _snapshot(date(2024, 6, 2), 99), _snapshot(date(2024, 6, 3), 12.5)]

        assert period_change_pct(snapshots) == pytest.approx(25.0)

    def test_fewer_than_two_snapshots(self):
        assert period_change_pct([]) is None
        assert period_change_pct([_snapshot(date(2024, 6, 1))]) is None


class TestRunLogAndPing:
    def test_run_log_upserts_per_item_and_day(self, snapshot_store):
        day = date(2024, 6, 1)
        snapshot_store.record_run_log("item-1", day, "run-1", sample_count=1, skip_reason="insufficient_data")
        snapshot_store.record_run_log("item-1", day, "run-2", sample_count=6, median_reference=10.0)

        record = snapshot_store.get_run_log("item-1", day)
        assert record.run_id == "run-2"
        assert record.was_created is True
        assert record.skip_reason is None
        assert record.sample_count == 6

    def test_ping_succeeds_against_live_database(self, snapshot_store):
        snapshot_store.ping()

    def test_ping_raises_when_storage_unreachable(self):
        session = MagicMock()
        session.__enter__.return_value = session
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("unable to open database"))
        store = SnapshotStore(lambda: session)

        with pytest.raises(StorageUnavailableError):
            store.ping()
