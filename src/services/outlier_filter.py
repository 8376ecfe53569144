"""Robust outlier rejection using the median absolute deviation."""

from collections.abc import Callable, Sequence
from typing import Any

from src.models.price_data import FilterResult, ReferenceAmount

DEFAULT_MAD_MULTIPLIER = 3.0
DEFAULT_MIN_SAMPLES = 5


def median(values: Sequence[float]) -> float:
    """
    Median of ``values``; even-sized sets average the two middle values.

    Raises:
        ValueError: If ``values`` is empty
    """
    if not values:
        raise ValueError("median() of an empty sample set")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def median_absolute_deviation(values: Sequence[float], center: float | None = None) -> float:
    """Median of ``|x - center|``; ``center`` defaults to the median of ``values``."""
    if center is None:
        center = median(values)
    return median([abs(x - center) for x in values])


def _reference_amount(sample: Any) -> float:
    if isinstance(sample, ReferenceAmount):
        return sample.amount
    return float(sample)


class OutlierFilter:
    """Rejects samples further than ``multiplier`` MADs from the median."""

    def __init__(
        self,
        multiplier: float = DEFAULT_MAD_MULTIPLIER,
        min_samples: int = DEFAULT_MIN_SAMPLES,
    ):
        """
        Args:
            multiplier: Rejection threshold in MADs (k)
            min_samples: Sets smaller than this are returned unchanged
        """
        if multiplier <= 0:
            raise ValueError("multiplier must be positive")
        self.multiplier = multiplier
        self.min_samples = min_samples

    def filter(
        self,
        samples: Sequence[Any],
        key: Callable[[Any], float] = _reference_amount,
    ) -> FilterResult:
        """
        Split ``samples`` into kept and removed sets.

        Samples may be ReferenceAmounts or plain numbers; ``key`` extracts the
        value to test. Input order is preserved in both output lists.
        """
        samples = list(samples)
        if not samples:
            return FilterResult()

        values = [key(s) for s in samples]
        center = median(values)
        mad = median_absolute_deviation(values, center)

        # Too few points for robust statistics
        if len(samples) < self.min_samples:
            return FilterResult(kept=samples, median=center, mad=mad, filtered=False)

        # More than half the values identical: reject nothing
        if mad == 0:
            return FilterResult(kept=samples, median=center, mad=mad, filtered=False)

        threshold = self.multiplier * mad
        kept, removed = [], []
        for sample, value in zip(samples, values):
            if abs(value - center) > threshold:
                removed.append(sample)
            else:
                kept.append(sample)

        return FilterResult(kept=kept, removed=removed, median=center, mad=mad, filtered=True)
