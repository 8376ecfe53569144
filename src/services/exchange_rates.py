"""Exchange rate lookup ports and the upstream rate fetcher."""

import bisect
import threading
from collections import defaultdict
from datetime import datetime
from typing import Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.database.models import ExchangeRateRecord
from src.models.price_data import ExchangeRate
from src.services.errors import PersistenceError, UpstreamUnavailableError
from src.utils.logger import StructuredLogger
from src.utils.time_utils import as_aware_utc, start_of_day, to_naive_utc, utc_now


def make_pair(base_currency: str, quote_currency: str) -> str:
    return f"{base_currency.upper()}/{quote_currency.upper()}"


def split_pair(currency_pair: str) -> tuple[str, str]:
    """Split ``"EUR/USD"`` into ``("EUR", "USD")``."""
    base, sep, quote = currency_pair.partition("/")
    if not sep or len(base) != 3 or len(quote) != 3:
        raise ValueError(f"Invalid currency pair: {currency_pair!r}")
    return base.upper(), quote.upper()


class ExchangeRateProvider(Protocol):
    """Point-in-time rate lookup used by the currency normalizer."""

    def get_rate(self, currency_pair: str, as_of: datetime) -> float | None:
        """Latest rate at or before ``as_of``, or None when there is none."""
        ...


class InMemoryRateTable:
    """Rate table held in memory; lookups never interpolate between entries."""

    def __init__(self, rates: list[ExchangeRate] | None = None):
        self._lock = threading.Lock()
        self._times: dict[str, list[datetime]] = defaultdict(list)
        self._rates: dict[str, list[float]] = defaultdict(list)
        for rate in rates or []:
            self.record_rate(rate)

    def record_rate(self, rate: ExchangeRate) -> None:
        """Insert or replace the rate for ``(pair, as_of)``."""
        if rate.rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {rate.rate}")
        pair = make_pair(rate.base_currency, rate.quote_currency)
        as_of = as_aware_utc(rate.as_of)
        with self._lock:
            times = self._times[pair]
            index = bisect.bisect_left(times, as_of)
            if index < len(times) and times[index] == as_of:
                self._rates[pair][index] = rate.rate
            else:
                times.insert(index, as_of)
                self._rates[pair].insert(index, rate.rate)

    def get_rate(self, currency_pair: str, as_of: datetime) -> float | None:
        base, quote = split_pair(currency_pair)
        pair = make_pair(base, quote)
        with self._lock:
            times = self._times.get(pair)
            if not times:
                return None
            index = bisect.bisect_right(times, as_aware_utc(as_of)) - 1
            if index < 0:
                return None
            return self._rates[pair][index]


class DatabaseRateTable:
    """Rate table backed by the ``exchange_rates`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_rate(self, currency_pair: str, as_of: datetime) -> float | None:
        base, quote = split_pair(currency_pair)
        with self.session_factory() as session:
            record = (
                session.query(ExchangeRateRecord)
                .filter(
                    ExchangeRateRecord.base_currency == base,
                    ExchangeRateRecord.quote_currency == quote,
                    ExchangeRateRecord.as_of <= to_naive_utc(as_of),
                )
                .order_by(ExchangeRateRecord.as_of.desc())
                .first()
            )
            return record.rate if record else None

    def record_rate(self, rate: ExchangeRate) -> None:
        """Insert or overwrite the rate for ``(base, quote, as_of)``."""
        if rate.rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {rate.rate}")
        as_of = to_naive_utc(rate.as_of)
        session: Session = self.session_factory()
        try:
            record = (
                session.query(ExchangeRateRecord)
                .filter_by(
                    base_currency=rate.base_currency.upper(),
                    quote_currency=rate.quote_currency.upper(),
                    as_of=as_of,
                )
                .one_or_none()
            )
            if record is None:
                session.add(
                    ExchangeRateRecord(
                        base_currency=rate.base_currency.upper(),
                        quote_currency=rate.quote_currency.upper(),
                        rate=rate.rate,
                        as_of=as_of,
                    )
                )
            else:
                record.rate = rate.rate
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(rate.currency_pair, str(e)) from e
        finally:
            session.close()


class ExchangeRateFetcher:
    """
    Pulls the latest rates from an HTTP rates API into a rate table.

    The API is expected to answer ``GET <url>?base=<REF>`` with
    ``{"base": "USD", "date": "YYYY-MM-DD", "rates": {"EUR": 0.92, ...}}``
    where each rate is quote units per one base unit. Stored pairs are
    ``CUR/REF`` so observations can be converted directly.
    """

    def __init__(
        self,
        api_url: str,
        rate_table: DatabaseRateTable | InMemoryRateTable,
        reference_currency: str = "USD",
        currencies: list[str] | None = None,
        timeout: int = 10,
    ):
        self.api_url = api_url
        self.rate_table = rate_table
        self.reference_currency = reference_currency.upper()
        self.currencies = [c.upper() for c in currencies or []]
        self.timeout = timeout
        self.logger = StructuredLogger("ExchangeRateFetcher")

    def fetch_rates(self) -> list[ExchangeRate]:
        """
        Fetch and record the latest rates.

        Returns:
            The rates that were recorded

        Raises:
            UpstreamUnavailableError: If the API is unreachable or the payload is malformed
        """
        params = {"base": self.reference_currency}
        if self.currencies:
            params["symbols"] = ",".join(self.currencies)

        try:
            response = requests.get(self.api_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            raw_rates = data["rates"]
            as_of = (
                start_of_day(datetime.strptime(data["date"], "%Y-%m-%d").date())
                if data.get("date")
                else utc_now()
            )
        except requests.RequestException as e:
            self.logger.warning(
                "Exchange rate API unreachable",
                context={"url": self.api_url, "result": "failed", "error": str(e)},
            )
            raise UpstreamUnavailableError("rates_api", str(e)) from e
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(
                "Exchange rate API returned an unexpected payload",
                context={"url": self.api_url, "result": "malformed", "error": str(e)},
            )
            raise UpstreamUnavailableError("rates_api", f"malformed payload: {e}") from e

        recorded = []
        for currency, quote_per_reference in raw_rates.items():
            currency = currency.upper()
            if currency == self.reference_currency:
                continue
            if self.currencies and currency not in self.currencies:
                continue
            try:
                value = float(quote_per_reference)
            except (TypeError, ValueError):
                continue
            if value <= 0:
                continue
            rate = ExchangeRate(
                base_currency=currency,
                quote_currency=self.reference_currency,
                rate=1.0 / value,
                as_of=as_of,
            )
            self.rate_table.record_rate(rate)
            recorded.append(rate)

        self.logger.info(
            "Recorded exchange rates",
            context={
                "reference_currency": self.reference_currency,
                "count": len(recorded),
                "as_of": as_of.isoformat(),
            },
        )
        return recorded
