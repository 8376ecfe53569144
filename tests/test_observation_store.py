"""Tests for observation ingestion and windowed reads."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.database.models import PriceObservationRecord
from src.models.price_data import PriceSource
from src.services.errors import PersistenceError
from src.services.observation_store import ObservationStore

OBSERVED_AT = datetime(2024, 6, 10, 14, 30, tzinfo=UTC)


def _count(session_factory) -> int:
    with session_factory() as session:
        return session.query(PriceObservationRecord).count()


class TestSubmitObservation:
    """Best-effort ingestion."""

    def test_stores_observation(self, observation_store, session_factory):
        assert observation_store.submit_observation("item-1", "ebay", 12.5, "usd", OBSERVED_AT)

        with session_factory() as session:
            record = session.query(PriceObservationRecord).one()
        assert record.raw_currency == "USD"
        assert record.source == "ebay"
        assert record.is_outlier is False

    def test_duplicate_source_event_is_ignored(self, observation_store, session_factory):
        for _ in range(3):
            assert observation_store.submit_observation(
                "item-1", PriceSource.EBAY, 12.5, "USD", OBSERVED_AT, source_event_id="sale-42"
            )

        assert _count(session_factory) == 1

    def test_same_event_id_from_different_sources_is_kept(self, observation_store, session_factory):
        observation_store.submit_observation("item-1", "ebay", 12.5, "USD", OBSERVED_AT, "sale-42")
        observation_store.submit_observation("item-1", "tcgplayer", 12.5, "USD", OBSERVED_AT, "sale-42")

        assert _count(session_factory) == 2

    def test_submissions_without_event_id_are_all_kept(self, observation_store, session_factory):
        observation_store.submit_observation("item-1", "ebay", 12.5, "USD", OBSERVED_AT)
        observation_store.submit_observation("item-1", "ebay", 12.5, "USD", OBSERVED_AT)

        assert _count(session_factory) == 2

    @pytest.mark.parametrize(
        "item_id,source,amount,currency",
        [
            ("", "ebay", 10.0, "USD"),
            ("item-1", "unknown-market", 10.0, "USD"),
            ("item-1", "ebay", 0, "USD"),
            ("item-1", "ebay", -5.0, "USD"),
            ("item-1", "ebay", 10.0, "US"),
            ("item-1", "ebay", 10.0, None),
        ],
    )
    def test_invalid_input_is_rejected_without_raising(
        self, observation_store, session_factory, item_id, source, amount, currency
    ):
        assert observation_store.submit_observation(item_id, source, amount, currency, OBSERVED_AT) is False
        assert _count(session_factory) == 0

    def test_storage_failure_returns_false(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        store = ObservationStore(lambda: session)

        assert store.submit_observation("item-1", "ebay", 10.0, "USD", OBSERVED_AT) is False
        session.rollback.assert_called_once()


class TestWindowedReads:
    def test_window_is_inclusive_and_ordered(self, observation_store):
        for hours in (48, 0, 24, 100):
            observation_store.submit_observation(
                "item-1", "ebay", 10.0 + hours, "USD", OBSERVED_AT - timedelta(hours=hours)
            )
        observation_store.submit_observation("item-2", "ebay", 1.0, "USD", OBSERVED_AT)

        observations = observation_store.observations_in_window(
            "item-1", OBSERVED_AT - timedelta(hours=48), OBSERVED_AT
        )

        assert [o.raw_amount for o in observations] == [58.0, 34.0, 10.0]
        assert all(o.observed_at.tzinfo is not None for o in observations)
        assert observations[-1].observed_at == OBSERVED_AT

    def test_list_item_ids_is_distinct_and_sorted(self, observation_store):
        for item_id in ("b", "a", "b"):
            observation_store.submit_observation(item_id, "ebay", 1.0, "USD", OBSERVED_AT)

        assert observation_store.list_item_ids() == ["a", "b"]

    def test_mark_outliers_sets_and_clears_flag(self, observation_store):
        for amount in (10.0, 500.0):
            observation_store.submit_observation("item-1", "ebay", amount, "USD", OBSERVED_AT)
        normal, extreme = observation_store.observations_in_window(
            "item-1", OBSERVED_AT, OBSERVED_AT
        )

        observation_store.mark_outliers("item-1", [extreme.id], [normal.id])
        flags = {
            o.raw_amount: o.is_outlier
            for o in observation_store.observations_in_window("item-1", OBSERVED_AT, OBSERVED_AT)
        }
        assert flags == {10.0: False, 500.0: True}

        observation_store.mark_outliers("item-1", [], [extreme.id])
        assert not any(
            o.is_outlier
            for o in observation_store.observations_in_window("item-1", OBSERVED_AT, OBSERVED_AT)
        )

    def test_mark_outliers_failure_raises(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("locked"))
        store = ObservationStore(lambda: session)

        with pytest.raises(PersistenceError):
            store.mark_outliers("item-1", [1], [])
