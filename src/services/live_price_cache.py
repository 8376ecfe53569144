"""Live price cache with per-item serialized updates and change broadcasting.

Each item moves through ``stable -> updating -> just_changed -> stable``.
Writes for one item are serialized by that item's lock; different items
update concurrently. The ``just_changed`` flag is a UI highlight that
expires on its own: every read re-checks the deadline, so a flag can never
outlive its window even if nobody reads the item for hours.
"""

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.models.price_data import LivePriceState, PriceAnchors, PriceChangeEvent, PriceStatus
from src.services.price_broadcaster import PriceChangeBroadcaster
from src.utils.event_store import EventStore, EventType
from src.utils.logger import StructuredLogger
from src.utils.time_utils import utc_now

STABLE: PriceStatus = "stable"
UPDATING: PriceStatus = "updating"
JUST_CHANGED: PriceStatus = "just_changed"


def percent_change(current: float, anchor: float | None) -> float | None:
    """Percentage change of ``current`` against ``anchor``; None without a usable anchor."""
    if anchor is None or anchor <= 0:
        return None
    return (current - anchor) / anchor * 100


@dataclass
class _CachedPrice:
    current_price: float
    previous_price: float | None
    last_updated_at: datetime
    source: str | None
    status: PriceStatus
    just_changed_until: datetime | None


class LivePriceCache:
    """Latest known price per item, diffed against batch-refreshed anchors."""

    def __init__(
        self,
        broadcaster: PriceChangeBroadcaster | None = None,
        just_changed_window_ms: int = 500,
        stale_after_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
        event_store: EventStore | None = None,
    ):
        """
        Initialize the cache.

        Args:
            broadcaster: Receives a change event for every accepted price mutation
            just_changed_window_ms: How long ``just_changed`` stays set after a mutation
            stale_after_seconds: Age after which a cached price is reported stale
            clock: Returns the current aware UTC time
            event_store: Optional event store for live update events
        """
        self.broadcaster = broadcaster
        self.just_changed_window = timedelta(milliseconds=just_changed_window_ms)
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.clock = clock
        self.event_store = event_store
        self.logger = StructuredLogger("LivePriceCache")

        self._prices: dict[str, _CachedPrice] = {}
        self._anchors: dict[str, PriceAnchors] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, item_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = self._locks[item_id] = threading.Lock()
            return lock

    def _existing_lock(self, item_id: str) -> "threading.Lock | None":
        with self._locks_guard:
            return self._locks.get(item_id)

    def _expire(self, entry: _CachedPrice, now: datetime) -> None:
        if entry.status == JUST_CHANGED and (
            entry.just_changed_until is None or now >= entry.just_changed_until
        ):
            entry.status = STABLE
            entry.just_changed_until = None

    def _view(self, item_id: str, entry: _CachedPrice, now: datetime) -> LivePriceState:
        self._expire(entry, now)
        anchors = self._anchors.get(item_id, PriceAnchors())
        return LivePriceState(
            item_id=item_id,
            current_price=entry.current_price,
            previous_price=entry.previous_price,
            change_24h_pct=percent_change(entry.current_price, anchors.price_24h_ago),
            change_7d_pct=percent_change(entry.current_price, anchors.price_7d_ago),
            change_30d_pct=percent_change(entry.current_price, anchors.price_30d_ago),
            last_updated_at=entry.last_updated_at,
            just_changed=entry.status == JUST_CHANGED,
            status=entry.status,
            source=entry.source,
            is_stale=now - entry.last_updated_at > self.stale_after,
        )

    def apply_update(
        self, item_id: str, price: float, source: str | None = None
    ) -> tuple[LivePriceState, bool]:
        """
        Accept an authoritative price for an item.

        Applying the price the item already has is a no-op, so push and pull
        producers can both deliver the same change.

        Returns:
            Tuple of (resulting state, whether the price changed)

        Raises:
            ValueError: If ``price`` is not a positive number
        """
        if price is None or not price > 0:
            raise ValueError(f"price must be positive, got {price!r}")
        price = float(price)

        with self._lock_for(item_id):
            now = self.clock()
            entry = self._prices.get(item_id)
            if entry is not None and entry.current_price == price:
                return self._view(item_id, entry, now), False

            if entry is None:
                entry = _CachedPrice(
                    current_price=price,
                    previous_price=None,
                    last_updated_at=now,
                    source=source,
                    status=UPDATING,
                    just_changed_until=None,
                )
                with self._locks_guard:
                    self._prices[item_id] = entry
            else:
                entry.status = UPDATING
                entry.previous_price = entry.current_price
                entry.current_price = price
                entry.last_updated_at = now
                entry.source = source

            entry.status = JUST_CHANGED
            entry.just_changed_until = now + self.just_changed_window
            state = self._view(item_id, entry, now)

            # Published under the item lock so subscribers see writes in order
            if self.broadcaster is not None:
                self.broadcaster.publish(
                    PriceChangeEvent(
                        item_id=item_id,
                        current_price=state.current_price,
                        previous_price=state.previous_price,
                        change_pct=state.change_24h_pct,
                        just_changed=True,
                        emitted_at=now,
                    )
                )

        self.logger.debug(
            "Accepted live price update",
            context={
                "item_id": item_id,
                "current_price": state.current_price,
                "previous_price": state.previous_price,
                "source": source,
            },
        )
        if self.event_store:
            self.event_store.add_event(
                trace_id=None,
                event_type=EventType.LIVE_UPDATE,
                component="LivePriceCache",
                message="Accepted live price update",
                context={"item_id": item_id, "source": source},
            )
        return state, True

    def refresh_anchors(self, item_id: str, anchors: PriceAnchors) -> LivePriceState | None:
        """Replace the baselines used for 24h/7d/30d changes; does not highlight."""
        with self._lock_for(item_id):
            self._anchors[item_id] = anchors
            entry = self._prices.get(item_id)
            if entry is None:
                return None
            return self._view(item_id, entry, self.clock())

    def get_anchors(self, item_id: str) -> PriceAnchors | None:
        lock = self._existing_lock(item_id)
        if lock is None:
            return None
        with lock:
            return self._anchors.get(item_id)

    def get(self, item_id: str) -> LivePriceState | None:
        """Current state for an item, or None if no price was ever accepted."""
        lock = self._existing_lock(item_id)
        if lock is None:
            return None
        with lock:
            entry = self._prices.get(item_id)
            if entry is None:
                return None
            return self._view(item_id, entry, self.clock())

    def get_many(self, item_ids: Iterable[str]) -> dict[str, LivePriceState]:
        """Pull read for several items; unknown items are omitted."""
        states = {}
        for item_id in item_ids:
            state = self.get(item_id)
            if state is not None:
                states[item_id] = state
        return states

    def item_ids(self) -> list[str]:
        """Items with an accepted price."""
        with self._locks_guard:
            return sorted(self._prices)

