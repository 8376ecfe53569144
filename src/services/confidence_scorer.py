"""Confidence score for a daily snapshot from sample size and window span."""

from typing import Literal

# (minimum sample count, contribution), checked in order
SAMPLE_SIZE_STEPS: tuple[tuple[int, float], ...] = (
    (10, 0.5),
    (5, 0.3),
    (2, 0.15),
    (1, 0.05),
)

# (maximum days covered, contribution), checked in order
RECENCY_STEPS: tuple[tuple[int, float], ...] = (
    (7, 0.5),
    (14, 0.35),
    (30, 0.2),
)

ConfidenceLabel = Literal["high", "medium", "low"]


class ConfidenceScorer:
    """
    Step-function confidence in [0, 1].

    The sample-size and recency terms are summed, not multiplied, so a very
    recent single sale can outscore a larger but older sample. Changing the
    combination would change published confidence values.
    """

    def sample_size_term(self, liquidity_count: int) -> float:
        for minimum, contribution in SAMPLE_SIZE_STEPS:
            if liquidity_count >= minimum:
                return contribution
        return 0.0

    def recency_term(self, days_covered: int) -> float:
        for maximum, contribution in RECENCY_STEPS:
            if days_covered <= maximum:
                return contribution
        return 0.0

    def score(self, liquidity_count: int, days_covered: int) -> float:
        """
        Confidence for a snapshot.

        Args:
            liquidity_count: Number of filtered samples
            days_covered: Calendar-day span between oldest and newest sample

        Returns:
            Confidence clamped to [0, 1]
        """
        total = self.sample_size_term(liquidity_count) + self.recency_term(days_covered)
        return max(0.0, min(1.0, total))

    @staticmethod
    def label(confidence: float) -> ConfidenceLabel:
        """Human readable bucket for a confidence value."""
        if confidence >= 0.75:
            return "high"
        if confidence >= 0.4:
            return "medium"
        return "low"
