"""Publish/subscribe channel for live price change notifications."""

import queue
import threading
import uuid
from collections.abc import Iterable

from src.models.price_data import PriceChangeEvent
from src.utils.logger import StructuredLogger


class Subscription:
    """A consumer's bounded inbox of change events for a set of items."""

    def __init__(self, broadcaster: "PriceChangeBroadcaster", item_ids: frozenset[str], max_queue: int):
        self.id = str(uuid.uuid4())
        self.item_ids = item_ids
        self._broadcaster = broadcaster
        self._queue: queue.Queue[PriceChangeEvent] = queue.Queue(maxsize=max_queue)
        self.dropped = 0
        self.closed = False

    def offer(self, event: PriceChangeEvent) -> bool:
        """Deliver without blocking; a full inbox drops the event."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: float | None = None) -> PriceChangeEvent | None:
        """Next event, or None if nothing arrives within ``timeout`` seconds."""
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> list[PriceChangeEvent]:
        """All events currently queued, oldest first."""
        events = []
        while True:
            event = self.get()
            if event is None:
                return events
            events.append(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broadcaster.unsubscribe(self)


class PriceChangeBroadcaster:
    """
    Fan-out of change events to subscribers keyed by item id.

    Delivery is at-most-once and best-effort: a slow consumer loses events
    and must re-read current state through the pull API.
    """

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._subscriptions: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()
        self.logger = StructuredLogger("PriceChangeBroadcaster")

    def subscribe(self, item_ids: Iterable[str], max_queue: int | None = None) -> Subscription:
        """Subscribe to change events for ``item_ids``."""
        ids = frozenset(item_ids)
        if not ids:
            raise ValueError("subscribe requires at least one item id")
        subscription = Subscription(self, ids, max_queue or self.max_queue)
        with self._lock:
            for item_id in ids:
                self._subscriptions.setdefault(item_id, set()).add(subscription)
        self.logger.debug(
            "Subscription opened",
            context={"subscription_id": subscription.id, "item_count": len(ids)},
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            for item_id in subscription.item_ids:
                subscribers = self._subscriptions.get(item_id)
                if subscribers is None:
                    continue
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscriptions[item_id]
        subscription.closed = True

    def subscriber_count(self, item_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(item_id, ()))

    def publish(self, event: PriceChangeEvent) -> int:
        """
        Offer ``event`` to every subscriber of its item.

        Returns:
            Number of subscribers the event was delivered to
        """
        with self._lock:
            subscribers = list(self._subscriptions.get(event.item_id, ()))

        delivered = 0
        for subscription in subscribers:
            if subscription.offer(event):
                delivered += 1
            else:
                self.logger.debug(
                    "Dropped change event for slow subscriber",
                    context={"item_id": event.item_id, "subscription_id": subscription.id},
                )
        return delivered
