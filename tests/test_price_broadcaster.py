"""Tests for the price change publish/subscribe channel."""

import threading
from datetime import UTC, datetime

import pytest

from src.models.price_data import PriceChangeEvent
from src.services.price_broadcaster import PriceChangeBroadcaster


def _event(item_id: str, price: float) -> PriceChangeEvent:
    return PriceChangeEvent(
        item_id=item_id,
        current_price=price,
        previous_price=None,
        change_pct=None,
        just_changed=True,
        emitted_at=datetime(2024, 6, 1, tzinfo=UTC),
    )


class TestPriceChangeBroadcaster:
    """Tests for PriceChangeBroadcaster."""

    def test_delivers_only_to_subscribers_of_item(self):
        broadcaster = PriceChangeBroadcaster()
        watching_a = broadcaster.subscribe(["a"])
        watching_b = broadcaster.subscribe(["b"])
        watching_both = broadcaster.subscribe(["a", "b"])

        delivered = broadcaster.publish(_event("a", 1.0))

        assert delivered == 2
        assert [e.current_price for e in watching_a.drain()] == [1.0]
        assert watching_b.drain() == []
        assert [e.item_id for e in watching_both.drain()] == ["a"]

    def test_publish_without_subscribers(self):
        assert PriceChangeBroadcaster().publish(_event("a", 1.0)) == 0

    def test_full_queue_drops_events(self):
        broadcaster = PriceChangeBroadcaster()
        subscription = broadcaster.subscribe(["a"], max_queue=2)

        results = [broadcaster.publish(_event("a", float(i))) for i in range(4)]

        assert results == [1, 1, 0, 0]
        assert subscription.dropped == 2
        assert [e.current_price for e in subscription.drain()] == [0.0, 1.0]

    def test_slow_subscriber_does_not_block_others(self):
        broadcaster = PriceChangeBroadcaster()
        slow = broadcaster.subscribe(["a"], max_queue=1)
        fast = broadcaster.subscribe(["a"], max_queue=10)

        for i in range(3):
            broadcaster.publish(_event("a", float(i)))

        assert len(slow.drain()) == 1
        assert len(fast.drain()) == 3

    def test_close_unsubscribes(self):
        broadcaster = PriceChangeBroadcaster()
        subscription = broadcaster.subscribe(["a", "b"])
        assert broadcaster.subscriber_count("a") == 1

        subscription.close()

        assert subscription.closed is True
        assert broadcaster.subscriber_count("a") == 0
        assert broadcaster.subscriber_count("b") == 0
        assert broadcaster.publish(_event("a", 1.0)) == 0

    def test_subscribe_requires_item_ids(self):
        with pytest.raises(ValueError):
            PriceChangeBroadcaster().subscribe([])

    def test_get_waits_for_event(self):
        broadcaster = PriceChangeBroadcaster()
        subscription = broadcaster.subscribe(["a"])
        timer = threading.Timer(0.05, broadcaster.publish, args=[_event("a", 7.0)])
        timer.start()

        event = subscription.get(timeout=2)

        timer.join()
        assert event.current_price == 7.0

    def test_get_times_out_with_none(self):
        subscription = PriceChangeBroadcaster().subscribe(["a"])

        assert subscription.get(timeout=0.01) is None

