"""Result types produced by the price-change and trend engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pipelines.model import utcnow


class Significance(str, Enum):
    MINOR = "minor"
    SIGNIFICANT = "significant"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def escalates(self) -> bool:
        """Whether statistics, trend and an alert are attached to the change."""
        return self is not Significance.MINOR


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


class StatisticalSummary(BaseModel):
    """Descriptive statistics of a price against its historical window."""

    model_config = ConfigDict(frozen=True)

    insufficient_data: bool = False
    data_points: int = 0
    mean: float | None = None
    median: float | None = None
    std_dev: float | None = Field(default=None, description="Population standard deviation.")
    coefficient_of_variation: float | None = Field(
        default=None, description="std_dev / mean * 100."
    )
    z_score: float | None = None
    percentile_rank: float | None = Field(
        default=None, description="Share of historical prices <= the current price, in percent."
    )
    volatility_score: float | None = None
    min_price: float | None = None
    max_price: float | None = None


class TrendResult(BaseModel):
    """Ordinary least-squares fit of price against an integer time index."""

    model_config = ConfigDict(frozen=True)

    direction: TrendDirection
    insufficient_data: bool = False
    data_points: int = 0
    slope: float | None = None
    intercept: float | None = None
    correlation: float | None = None
    trend_strength: float | None = None
    projected_price_7d: float | None = None


class PriceChangeEvent(BaseModel):
    """Delta between two consecutive observations of the same group key."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    entity_id: str
    check_in: date
    check_out: date
    room_category: str
    earlier_observation_id: str
    later_observation_id: str
    earlier_observed_at: datetime
    later_observed_at: datetime
    previous_price: float
    current_price: float
    delta: float
    delta_pct: float
    significance: Significance
    days_before_checkin: int = 0
    is_weekend: bool = False
    season: str | None = None
    statistics: StatisticalSummary | None = None
    trend: TrendResult | None = None
    detected_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _ordered_observations(self) -> "PriceChangeEvent":
        if self.earlier_observation_id == self.later_observation_id:
            raise ValueError("a price change needs two distinct observations")
        if not self.earlier_observed_at < self.later_observed_at:
            raise ValueError("earlier observation must strictly precede the later one")
        return self

    @property
    def is_price_drop(self) -> bool:
        return self.delta < 0


class ForecastPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    days_ahead: int
    target_date: date
    predicted_price: float
    confidence: float
    price_range_low: float
    price_range_high: float


class Forecast(BaseModel):
    """Short-horizon price projection.

    ``source`` tells real statistical output apart from the synthetic
    placeholder used when a key has no usable history.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    room_category: str | None = None
    check_in: date
    source: Literal["statistical", "synthetic"]
    model_version: str
    data_points: int = 0
    generated_at: datetime = Field(default_factory=utcnow)
    points: list[ForecastPoint] = Field(default_factory=list)


__all__ = [
    "Forecast",
    "ForecastPoint",
    "PriceChangeEvent",
    "Significance",
    "StatisticalSummary",
    "TrendDirection",
    "TrendResult",
]
