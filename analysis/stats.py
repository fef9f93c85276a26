"""Closed-form descriptive statistics and least-squares trend fitting."""

from __future__ import annotations

import math
import statistics
from typing import Sequence

from analysis.model import StatisticalSummary, TrendDirection, TrendResult

MIN_STATISTICS_POINTS = 5
MIN_TREND_POINTS = 3
DEFAULT_TREND_EPSILON = 1e-6
PROJECTION_DAYS = 7


def population_std_dev(values: Sequence[float]) -> float:
    return statistics.pstdev(values) if values else 0.0


def coefficient_of_variation(values: Sequence[float]) -> float:
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return population_std_dev(values) / mean * 100


def z_score(value: float, population: Sequence[float]) -> float:
    std_dev = population_std_dev(population)
    if std_dev == 0:
        return 0.0
    return (value - statistics.fmean(population)) / std_dev


def percentile_rank(value: float, population: Sequence[float]) -> float:
    if not population:
        return 0.0
    at_or_below = sum(1 for price in population if price <= value)
    return at_or_below / len(population) * 100


def volatility(values: Sequence[float]) -> float:
    """Standard deviation of successive relative returns, in percent."""
    returns = [
        (current - previous) / previous
        for previous, current in zip(values, values[1:])
        if previous
    ]
    if len(returns) < 2:
        return 0.0
    return population_std_dev(returns) * 100


def summarize(
    current_price: float,
    history: Sequence[float],
    *,
    min_points: int = MIN_STATISTICS_POINTS,
) -> StatisticalSummary:
    """Describe ``current_price`` against a historical population of prices."""

    if len(history) < min_points:
        return StatisticalSummary(insufficient_data=True, data_points=len(history))

    return StatisticalSummary(
        data_points=len(history),
        mean=statistics.fmean(history),
        median=statistics.median(history),
        std_dev=population_std_dev(history),
        coefficient_of_variation=coefficient_of_variation(history),
        z_score=z_score(current_price, history),
        percentile_rank=percentile_rank(current_price, history),
        volatility_score=volatility(history),
        min_price=min(history),
        max_price=max(history),
    )


def linear_regression(values: Sequence[float]) -> tuple[float, float, float]:
    """Fit ``values`` against 0..n-1. Returns (slope, intercept, correlation)."""

    n = len(values)
    if n == 0:
        return 0.0, 0.0, 0.0
    xs = range(n)
    mean_x = (n - 1) / 2
    mean_y = statistics.fmean(values)
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, values))
    sxx = sum((x - mean_x) ** 2 for x in xs)
    syy = sum((y - mean_y) ** 2 for y in values)

    slope = sxy / sxx if sxx else 0.0
    intercept = mean_y - slope * mean_x
    denominator = math.sqrt(sxx * syy)
    correlation = sxy / denominator if denominator else 0.0
    return slope, intercept, correlation


def direction_for_slope(slope: float, epsilon: float = DEFAULT_TREND_EPSILON) -> TrendDirection:
    if abs(slope) <= epsilon:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if slope > 0 else TrendDirection.DECREASING


def compute_trend(
    prices: Sequence[float],
    current_price: float,
    *,
    epsilon: float = DEFAULT_TREND_EPSILON,
    min_points: int = MIN_TREND_POINTS,
) -> TrendResult:
    """Linear trend over time-ordered ``prices`` with a naive 7-day projection."""

    if len(prices) < min_points:
        return TrendResult(
            direction=TrendDirection.INSUFFICIENT_DATA,
            insufficient_data=True,
            data_points=len(prices),
        )

    slope, intercept, correlation = linear_regression(prices)
    return TrendResult(
        direction=direction_for_slope(slope, epsilon),
        data_points=len(prices),
        slope=slope,
        intercept=intercept,
        correlation=correlation,
        trend_strength=abs(correlation),
        projected_price_7d=slope * PROJECTION_DAYS + current_price,
    )


__all__ = [
    "DEFAULT_TREND_EPSILON",
    "MIN_STATISTICS_POINTS",
    "MIN_TREND_POINTS",
    "coefficient_of_variation",
    "compute_trend",
    "direction_for_slope",
    "linear_regression",
    "percentile_rank",
    "population_std_dev",
    "summarize",
    "volatility",
    "z_score",
]
