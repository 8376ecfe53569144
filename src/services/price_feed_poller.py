"""Fixed-interval pull producer for the live price cache."""

from collections.abc import Callable
from typing import Protocol

import requests

from src.services.errors import UpstreamUnavailableError
from src.services.live_price_cache import LivePriceCache
from src.utils.event_store import EventStore, EventType
from src.utils.logger import StructuredLogger
from src.utils.trace_context import get_current_trace


class LivePriceSource(Protocol):
    """Port for fetching authoritative current prices."""

    def fetch_prices(self, item_ids: list[str]) -> dict[str, float]:
        """Map of item id to current price; items the source does not know are omitted."""
        ...


class HttpLivePriceSource:
    """
    Live prices over HTTP.

    Expects ``GET <url>?item_ids=a,b`` to answer
    ``{"prices": [{"item_id": "a", "price": 12.5}, ...]}``.
    """

    def __init__(self, url: str, timeout: int = 10):
        self.url = url
        self.timeout = timeout
        self.logger = StructuredLogger("HttpLivePriceSource")

    def fetch_prices(self, item_ids: list[str]) -> dict[str, float]:
        """
        Raises:
            UpstreamUnavailableError: If the feed is unreachable or the payload is malformed
        """
        if not item_ids:
            return {}
        try:
            response = requests.get(
                self.url, params={"item_ids": ",".join(item_ids)}, timeout=self.timeout
            )
            response.raise_for_status()
            entries = response.json()["prices"]
        except requests.RequestException as e:
            raise UpstreamUnavailableError("live_feed", str(e)) from e
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamUnavailableError("live_feed", f"malformed payload: {e}") from e

        prices = {}
        for entry in entries:
            try:
                prices[str(entry["item_id"])] = float(entry["price"])
            except (KeyError, TypeError, ValueError):
                self.logger.warning("Skipping malformed live price entry", context={"entry": entry})
        return prices


class LivePricePoller:
    """
    Pulls current prices and writes them into the cache.

    Runs alongside push updates; both paths go through
    ``LivePriceCache.apply_update`` so a change delivered twice is applied once.
    """

    def __init__(
        self,
        source: LivePriceSource,
        cache: LivePriceCache,
        item_ids_provider: Callable[[], list[str]] | None = None,
        event_store: EventStore | None = None,
    ):
        self.source = source
        self.cache = cache
        self.item_ids_provider = item_ids_provider or cache.item_ids
        self.event_store = event_store
        self.logger = StructuredLogger("LivePricePoller")

    def poll_once(self) -> int:
        """
        Fetch and apply one round of prices.

        Returns:
            Number of items whose price changed
        """
        item_ids = list(self.item_ids_provider())
        if not item_ids:
            return 0

        # Network I/O happens before any cache lock is taken
        try:
            prices = self.source.fetch_prices(item_ids)
        except UpstreamUnavailableError as e:
            self.logger.warning(
                "Live price feed unavailable; serving last known prices",
                context={"upstream": e.upstream, "reason": e.reason, "item_count": len(item_ids)},
            )
            if self.event_store:
                self.event_store.add_event(
                    trace_id=get_current_trace(),
                    event_type=EventType.UPSTREAM_UNAVAILABLE,
                    component="LivePricePoller",
                    message="Live price feed unavailable",
                    context={"upstream": e.upstream, "reason": e.reason},
                )
            return 0

        changed = 0
        for item_id, price in prices.items():
            try:
                _, was_changed = self.cache.apply_update(item_id, price, source="poll")
            except ValueError as e:
                self.logger.warning(
                    "Ignoring invalid polled price",
                    context={"item_id": item_id, "price": price, "reason": str(e)},
                )
                continue
            if was_changed:
                changed += 1

        self.logger.debug(
            "Live price poll complete",
            context={"requested": len(item_ids), "received": len(prices), "changed": changed},
        )
        return changed
