"""Short-horizon price forecasts.

A key with enough history gets a linear projection (``source="statistical"``).
Otherwise a deterministic placeholder is synthesized from a stable hash of the
key (``source="synthetic"``, ``model_version="demo"``) so callers always get a
forecast but can tell it apart from real output.
"""

from __future__ import annotations

import hashlib
import random
from datetime import date, timedelta
from typing import Sequence

from analysis.model import Forecast, ForecastPoint
from analysis.stats import MIN_STATISTICS_POINTS, linear_regression, population_std_dev

STATISTICAL_MODEL_VERSION = "linear-1"
SYNTHETIC_MODEL_VERSION = "demo"
DEFAULT_HORIZON_DAYS = 7

SYNTHETIC_BASE_PRICE = 15000.0
SYNTHETIC_BASE_SPREAD = 10000.0
SYNTHETIC_NOISE = 2000.0
WEEKEND_PREMIUM = 1.2
NEAR_TERM_PREMIUM = 1.1
NEAR_TERM_DAYS = 3


def stable_seed(*parts: object) -> int:
    """Seed derived from the key, independent of ``PYTHONHASHSEED``."""

    digest = hashlib.sha256("|".join(str(part) for part in parts).encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def statistical_forecast(
    entity_id: str,
    check_in: date,
    prices: Sequence[float],
    *,
    room_category: str | None = None,
    days: int = DEFAULT_HORIZON_DAYS,
) -> Forecast:
    slope, _, correlation = linear_regression(prices)
    current = prices[-1]
    spread = population_std_dev(prices)
    confidence = round(abs(correlation), 4)

    points = []
    for offset in range(days):
        predicted = max(0.0, current + slope * offset)
        points.append(
            ForecastPoint(
                days_ahead=offset,
                target_date=check_in + timedelta(days=offset),
                predicted_price=round(predicted),
                confidence=confidence,
                price_range_low=round(max(0.0, predicted - spread)),
                price_range_high=round(predicted + spread),
            )
        )
    return Forecast(
        entity_id=entity_id,
        room_category=room_category,
        check_in=check_in,
        source="statistical",
        model_version=STATISTICAL_MODEL_VERSION,
        data_points=len(prices),
        points=points,
    )


def synthetic_forecast(
    entity_id: str,
    check_in: date,
    *,
    room_category: str | None = None,
    days: int = DEFAULT_HORIZON_DAYS,
    data_points: int = 0,
) -> Forecast:
    rng = random.Random(stable_seed(entity_id, room_category or "", check_in.isoformat()))
    base = SYNTHETIC_BASE_PRICE + rng.random() * SYNTHETIC_BASE_SPREAD

    points = []
    for offset in range(days):
        target = check_in + timedelta(days=offset)
        price = base
        if target.weekday() >= 5:
            price *= WEEKEND_PREMIUM
        if offset < NEAR_TERM_DAYS:
            price *= NEAR_TERM_PREMIUM
        price += (rng.random() - 0.5) * SYNTHETIC_NOISE
        points.append(
            ForecastPoint(
                days_ahead=offset,
                target_date=target,
                predicted_price=round(price),
                confidence=(75 - offset * 2) / 100,
                price_range_low=round(price * 0.9),
                price_range_high=round(price * 1.1),
            )
        )
    return Forecast(
        entity_id=entity_id,
        room_category=room_category,
        check_in=check_in,
        source="synthetic",
        model_version=SYNTHETIC_MODEL_VERSION,
        data_points=data_points,
        points=points,
    )


def build_forecast(
    entity_id: str,
    check_in: date,
    prices: Sequence[float],
    *,
    room_category: str | None = None,
    days: int = DEFAULT_HORIZON_DAYS,
    min_points: int = MIN_STATISTICS_POINTS,
) -> Forecast:
    """Forecast ``days`` prices from time-ordered history, falling back to synthetic."""

    if len(prices) >= min_points:
        return statistical_forecast(
            entity_id, check_in, prices, room_category=room_category, days=days
        )
    return synthetic_forecast(
        entity_id,
        check_in,
        room_category=room_category,
        days=days,
        data_points=len(prices),
    )


__all__ = [
    "STATISTICAL_MODEL_VERSION",
    "SYNTHETIC_MODEL_VERSION",
    "build_forecast",
    "stable_seed",
    "statistical_forecast",
    "synthetic_forecast",
]
