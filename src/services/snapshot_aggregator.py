"""Snapshot aggregator building one daily price snapshot per item."""

from collections.abc import Iterable, Sequence
from datetime import date

from src.models.price_data import DailySnapshot, FilterResult, PriceObservation, ReferenceAmount
from src.services.confidence_scorer import ConfidenceScorer
from src.services.outlier_filter import OutlierFilter, median


def _sort_key(amount: ReferenceAmount) -> tuple:
    return (
        amount.observed_at,
        amount.amount,
        amount.source.value,
        amount.observation_id if amount.observation_id is not None else -1,
    )


class SnapshotAggregator:
    """
    Turns filtered reference amounts into a DailySnapshot.

    Secondary-currency medians come from same-currency raw samples, each run
    through the same outlier rule; they are never derived from the reference
    median.
    """

    def __init__(
        self,
        outlier_filter: OutlierFilter | None = None,
        confidence_scorer: ConfidenceScorer | None = None,
        reference_currency: str = "USD",
        secondary_currencies: Sequence[str] = (),
    ):
        self.outlier_filter = outlier_filter or OutlierFilter()
        self.confidence_scorer = confidence_scorer or ConfidenceScorer()
        self.reference_currency = reference_currency.upper()
        self.secondary_currencies = tuple(c.upper() for c in secondary_currencies)

    def collect_secondary_samples(
        self, observations: Iterable[PriceObservation]
    ) -> dict[str, list[float]]:
        """Group raw amounts by secondary currency (only configured currencies)."""
        samples: dict[str, list[float]] = {}
        for observation in observations:
            currency = observation.raw_currency.upper()
            if currency in self.secondary_currencies:
                samples.setdefault(currency, []).append(observation.raw_amount)
        return samples

    def secondary_medians(self, samples: dict[str, list[float]]) -> dict[str, float]:
        medians: dict[str, float] = {}
        for currency in sorted(samples):
            if currency not in self.secondary_currencies:
                continue
            result = self.outlier_filter.filter(sorted(samples[currency]), key=float)
            if result.kept:
                medians[currency] = median(result.kept)
        return medians

    def build_snapshot(
        self,
        item_id: str,
        snapshot_date: date,
        amounts: Sequence[ReferenceAmount],
        secondary_samples: dict[str, list[float]] | None = None,
    ) -> tuple[DailySnapshot | None, FilterResult]:
        """
        Build the snapshot for one item/day.

        Args:
            item_id: Catalog item identifier
            snapshot_date: Calendar day the snapshot represents
            amounts: Reference-currency amounts for the trailing window
            secondary_samples: Raw same-currency amounts keyed by currency

        Returns:
            Tuple of (snapshot or None when no samples survive, filter result)
        """
        ordered = sorted(amounts, key=_sort_key)
        result = self.outlier_filter.filter(ordered)
        kept: list[ReferenceAmount] = result.kept
        if not kept:
            return None, result

        values = [a.amount for a in kept]
        days = [a.observed_at.date() for a in kept]
        days_covered = (max(days) - min(days)).days
        liquidity_count = len(kept)

        snapshot = DailySnapshot(
            item_id=item_id,
            snapshot_date=snapshot_date,
            median_reference=median(values),
            low=min(values),
            high=max(values),
            liquidity_count=liquidity_count,
            confidence=self.confidence_scorer.score(liquidity_count, days_covered),
            days_covered=days_covered,
            contributing_sources=tuple(sorted({a.source.value for a in kept})),
            median_secondary_currencies=self.secondary_medians(secondary_samples or {}),
            reference_currency=self.reference_currency,
        )
        return snapshot, result
