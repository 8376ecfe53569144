"""Tests for the median/MAD outlier filter."""

from datetime import UTC, datetime

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from src.models.price_data import PriceSource, ReferenceAmount
from src.services.outlier_filter import OutlierFilter, median, median_absolute_deviation

prices = st.floats(min_value=0.01, max_value=100000, allow_nan=False, allow_infinity=False)


def _amounts(values):
    observed_at = datetime(2024, 6, 1, tzinfo=UTC)
    return [
        ReferenceAmount(
            item_id="item-1",
            amount=v,
            observed_at=observed_at,
            source=PriceSource.EBAY,
            observation_id=i,
        )
        for i, v in enumerate(values)
    ]


class TestMedian:
    """Tests for the median helpers."""

    def test_odd_sized_set_uses_middle_value(self):
        assert median([9, 10, 10.5, 11, 500]) == 10.5

    def test_even_sized_set_averages_two_middle_values(self):
        assert median([9, 10, 10.5, 11]) == 10.25

    def test_empty_set_raises(self):
        with pytest.raises(ValueError):
            median([])

    def test_mad_of_scenario_values(self):
        assert median_absolute_deviation([10, 11, 9, 10.5, 500]) == 0.5


class TestOutlierFilter:
    """Tests for OutlierFilter.filter."""

    def test_rejects_single_extreme_sale(self):
        """Scenario: [10, 11, 9, 10.5, 500] rejects 500 and keeps four samples."""
        result = OutlierFilter().filter(_amounts([10, 11, 9, 10.5, 500]))

        assert result.filtered is True
        assert result.median == 10.5
        assert result.mad == 0.5
        assert [a.amount for a in result.removed] == [500]
        assert [a.amount for a in result.kept] == [10, 11, 9, 10.5]
        assert result.removed_count == 1
        assert median([a.amount for a in result.kept]) == 10.25

    def test_empty_input_returns_empty_result(self):
        result = OutlierFilter().filter([])

        assert result.kept == []
        assert result.removed == []
        assert result.filtered is False

    def test_identical_values_reject_nothing(self):
        result = OutlierFilter().filter([5.0] * 6 + [50.0])

        assert result.mad == 0
        assert result.removed == []
        assert len(result.kept) == 7

    def test_accepts_plain_floats(self):
        result = OutlierFilter().filter([10, 11, 9, 10.5, 500], key=float)

        assert result.removed == [500]

    def test_custom_multiplier_widens_threshold(self):
        # |12 - 10.5| = 1.5 is rejected at k=2 (threshold 1.0) but kept at k=3
        values = [10, 10.5, 11, 10, 12, 10.5]
        assert 12 in OutlierFilter(multiplier=2).filter(values, key=float).removed
        assert 12 in OutlierFilter(multiplier=3).filter(values, key=float).kept

    def test_non_positive_multiplier_rejected(self):
        with pytest.raises(ValueError):
            OutlierFilter(multiplier=0)

    @given(values=st.lists(prices, min_size=0, max_size=4))
    def test_small_sets_are_returned_unchanged(self, values):
        """
        **Property: sets with fewer than 5 samples are not filtered**

        For any sample set with fewer than 5 points, the filter SHALL return
        the input unchanged.
        """
        result = OutlierFilter().filter(values, key=float)

        assert result.kept == values
        assert result.removed == []
        assert result.filtered is False

    @given(values=st.lists(prices, min_size=5, max_size=60))
    def test_kept_and_removed_respect_threshold(self, values):
        """
        **Property: retained values lie within 3 MADs, rejected values outside**

        For any sample set with at least 5 points and MAD > 0, every retained
        value SHALL satisfy |x - median| <= 3*MAD and every rejected value
        SHALL violate it.
        """
        center = median(values)
        mad = median_absolute_deviation(values, center)
        assume(mad > 0)

        result = OutlierFilter().filter(values, key=float)

        assert result.filtered is True
        assert len(result.kept) + len(result.removed) == len(values)
        for x in result.kept:
            assert abs(x - center) <= 3 * mad
        for x in result.removed:
            assert abs(x - center) > 3 * mad

    @given(values=st.lists(prices, min_size=5, max_size=60))
    def test_filter_keeps_at_least_half(self, values):
        """
        **Property: the median and its neighbours always survive**

        Since MAD is the median distance from the median, at least half of
        the samples are within one MAD and are never rejected.
        """
        result = OutlierFilter().filter(values, key=float)

        assert len(result.kept) * 2 >= len(values)
