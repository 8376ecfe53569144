"""Currency normalizer converting observations into the reference currency."""

from collections.abc import Iterable

from src.models.price_data import PriceObservation, ReferenceAmount
from src.services.errors import MissingExchangeRateError, UpstreamUnavailableError
from src.services.exchange_rates import ExchangeRateProvider, make_pair
from src.utils.logger import StructuredLogger


class CurrencyNormalizer:
    """Converts native-currency observations using a point-in-time rate port."""

    def __init__(self, rate_provider: ExchangeRateProvider, reference_currency: str = "USD"):
        """
        Initialize the normalizer.

        Args:
            rate_provider: Lookup returning the latest rate at or before a timestamp
            reference_currency: Currency every observation is converted into
        """
        self.rate_provider = rate_provider
        self.reference_currency = reference_currency.upper()
        self.logger = StructuredLogger("CurrencyNormalizer")

    def convert(self, observation: PriceObservation) -> ReferenceAmount:
        """
        Convert one observation.

        Raises:
            MissingExchangeRateError: If no rate exists at or before ``observed_at``
        """
        currency = observation.raw_currency.upper()
        if currency == self.reference_currency:
            amount = observation.raw_amount
        else:
            pair = make_pair(currency, self.reference_currency)
            try:
                rate = self.rate_provider.get_rate(pair, observation.observed_at)
            except UpstreamUnavailableError as e:
                raise MissingExchangeRateError(pair, observation.observed_at) from e
            if rate is None:
                raise MissingExchangeRateError(pair, observation.observed_at)
            amount = observation.raw_amount * rate

        return ReferenceAmount(
            item_id=observation.item_id,
            amount=amount,
            observed_at=observation.observed_at,
            source=observation.source,
            observation_id=observation.id,
        )

    def normalize(self, observation: PriceObservation) -> ReferenceAmount | None:
        """Convert one observation, or return None (logged) when no rate exists."""
        try:
            return self.convert(observation)
        except MissingExchangeRateError as e:
            self.logger.warning(
                "Excluding observation without exchange rate",
                context={
                    "item_id": observation.item_id,
                    "observation_id": observation.id,
                    "currency_pair": e.currency_pair,
                    "observed_at": observation.observed_at.isoformat(),
                },
            )
            return None

    def normalize_many(
        self, observations: Iterable[PriceObservation]
    ) -> tuple[list[ReferenceAmount], int]:
        """
        Convert a batch of observations.

        Returns:
            Tuple of (converted amounts in input order, number excluded for missing rates)
        """
        converted: list[ReferenceAmount] = []
        excluded = 0
        for observation in observations:
            amount = self.normalize(observation)
            if amount is None:
                excluded += 1
            else:
                converted.append(amount)
        return converted, excluded
