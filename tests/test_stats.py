import math

import pytest

from analysis.model import TrendDirection
from analysis.stats import (
    compute_trend,
    linear_regression,
    percentile_rank,
    summarize,
    volatility,
    z_score,
)


def test_constant_history_has_zero_spread_and_guarded_z_score():
    summary = summarize(100.0, [100.0] * 5)

    assert not summary.insufficient_data
    assert summary.mean == 100.0
    assert summary.median == 100.0
    assert summary.std_dev == 0.0
    assert summary.z_score == 0.0
    assert summary.coefficient_of_variation == 0.0
    assert summary.percentile_rank == 100.0
    assert not math.isnan(summary.volatility_score)


def test_summary_values():
    history = [100.0, 110.0, 120.0, 130.0, 140.0]

    summary = summarize(150.0, history)

    assert summary.mean == pytest.approx(120.0)
    assert summary.median == pytest.approx(120.0)
    assert summary.std_dev == pytest.approx(math.sqrt(200.0))
    assert summary.coefficient_of_variation == pytest.approx(math.sqrt(200.0) / 120.0 * 100)
    assert summary.z_score == pytest.approx(30.0 / math.sqrt(200.0))
    assert summary.min_price == 100.0
    assert summary.max_price == 140.0
    assert summary.data_points == 5


def test_small_history_is_insufficient():
    summary = summarize(100.0, [90.0, 95.0, 100.0, 105.0])

    assert summary.insufficient_data
    assert summary.data_points == 4
    assert summary.mean is None


def test_percentile_rank_counts_prices_at_or_below():
    assert percentile_rank(110.0, [100.0, 110.0, 120.0, 130.0]) == 50.0
    assert percentile_rank(90.0, [100.0, 110.0]) == 0.0


def test_z_score_and_volatility_helpers():
    assert z_score(5.0, [5.0, 5.0]) == 0.0
    assert volatility([100.0, 110.0]) == 0.0
    assert volatility([100.0, 110.0, 99.0]) > 0


@pytest.mark.parametrize(
    ("prices", "direction"),
    [
        ([100.0, 105.0, 112.0, 118.0], TrendDirection.INCREASING),
        ([118.0, 112.0, 105.0, 100.0], TrendDirection.DECREASING),
        ([100.0, 100.0, 100.0, 100.0], TrendDirection.STABLE),
    ],
)
def test_trend_direction(prices, direction):
    trend = compute_trend(prices, prices[-1])

    assert trend.direction is direction
    if direction is TrendDirection.INCREASING:
        assert trend.slope > 0
    elif direction is TrendDirection.DECREASING:
        assert trend.slope < 0
    else:
        assert trend.slope == 0.0


def test_trend_projection_and_strength():
    trend = compute_trend([100.0, 110.0, 120.0], 120.0)

    assert trend.slope == pytest.approx(10.0)
    assert trend.intercept == pytest.approx(100.0)
    assert trend.correlation == pytest.approx(1.0)
    assert trend.trend_strength == pytest.approx(1.0)
    assert trend.projected_price_7d == pytest.approx(190.0)


def test_trend_needs_three_points():
    trend = compute_trend([100.0, 120.0], 120.0)

    assert trend.insufficient_data
    assert trend.direction is TrendDirection.INSUFFICIENT_DATA


def test_regression_of_constant_series():
    assert linear_regression([7.0, 7.0, 7.0]) == (0.0, 7.0, 0.0)
