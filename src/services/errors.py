"""Exception types raised by the price engine services."""

from datetime import datetime


class PriceEngineError(Exception):
    """Base class for price engine errors."""


class MissingExchangeRateError(PriceEngineError):
    """No rate exists at or before the observation time for a currency pair."""

    def __init__(self, currency_pair: str, as_of: datetime):
        super().__init__(f"No exchange rate for {currency_pair} at or before {as_of.isoformat()}")
        self.currency_pair = currency_pair
        self.as_of = as_of


class PersistenceError(PriceEngineError):
    """A single write failed; the batch records it and moves on."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"{item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


class StorageUnavailableError(PriceEngineError):
    """Storage cannot be reached at all; fatal for a batch run."""


class UpstreamUnavailableError(PriceEngineError):
    """An external rate or price feed could not be reached or parsed."""

    def __init__(self, upstream: str, reason: str):
        super().__init__(f"{upstream} unavailable: {reason}")
        self.upstream = upstream
        self.reason = reason
