"""Price-change detection, significance tiering and price alert classification.

Observations are grouped by (entity, check-in, check-out, room category) and
consecutive pairs within a group become change candidates once the relative
delta clears the noise floor. Changes tiered ``significant`` or higher are
enriched with statistics over a 30-day window and a linear trend over a 14-day
window, and each of them yields one price alert.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping, Sequence

from analysis.model import PriceChangeEvent, Significance
from analysis.stats import DEFAULT_TREND_EPSILON, compute_trend, summarize
from pipelines.model import AlertPriority, AlertRecord, Observation
from resilience.errors import Severity

logger = logging.getLogger(__name__)

GroupKey = tuple  # (entity_id, check_in, check_out, room_category)
HistoryProvider = Callable[[GroupKey, datetime, datetime], Sequence[Observation]]

STATISTICS_WINDOW_DAYS = 30
TREND_WINDOW_DAYS = 14
UNUSUAL_Z_SCORE = 2.0

PRIORITY_SEVERITY: dict[AlertPriority, Severity] = {
    AlertPriority.HIGH: Severity.HIGH,
    AlertPriority.MEDIUM: Severity.MEDIUM,
    AlertPriority.NORMAL: Severity.LOW,
}


@dataclass(frozen=True)
class SignificanceThresholds:
    """Percent thresholds evaluated on ``abs(delta_pct)``."""

    noise_floor: float = 5.0
    significant: float = 15.0
    major: float = 25.0
    critical: float = 40.0
    significant_drop: float = 20.0
    last_minute_days: int = 3


DEFAULT_THRESHOLDS = SignificanceThresholds()


def classify_significance(
    delta_pct: float, thresholds: SignificanceThresholds = DEFAULT_THRESHOLDS
) -> Significance | None:
    """Tier a percentage change; ``None`` when it is below the noise floor."""

    magnitude = abs(delta_pct)
    if magnitude < thresholds.noise_floor:
        return None
    if magnitude >= thresholds.critical:
        return Significance.CRITICAL
    if magnitude >= thresholds.major:
        return Significance.MAJOR
    if magnitude >= thresholds.significant:
        return Significance.SIGNIFICANT
    return Significance.MINOR


def group_observations(
    observations: Iterable[Observation],
) -> dict[GroupKey, list[Observation]]:
    groups: dict[GroupKey, list[Observation]] = defaultdict(list)
    for observation in observations:
        groups[observation.group_key].append(observation)
    for members in groups.values():
        members.sort(key=lambda obs: obs.observed_at)
    return dict(groups)


def detect_price_changes(
    observations: Iterable[Observation],
    thresholds: SignificanceThresholds = DEFAULT_THRESHOLDS,
) -> list[PriceChangeEvent]:
    """Bare change events (no statistics or trend) for every pair above the noise floor."""

    events: list[PriceChangeEvent] = []
    for members in group_observations(observations).values():
        for earlier, later in zip(members, members[1:]):
            # equal timestamps cannot be ordered
            if not earlier.observed_at < later.observed_at:
                continue
            delta = later.price - earlier.price
            delta_pct = delta / earlier.price * 100
            significance = classify_significance(delta_pct, thresholds)
            if significance is None:
                continue
            events.append(
                PriceChangeEvent(
                    entity_id=later.entity_id,
                    check_in=later.check_in,
                    check_out=later.check_out,
                    room_category=later.room_category,
                    earlier_observation_id=earlier.id,
                    later_observation_id=later.id,
                    earlier_observed_at=earlier.observed_at,
                    later_observed_at=later.observed_at,
                    previous_price=earlier.price,
                    current_price=later.price,
                    delta=delta,
                    delta_pct=delta_pct,
                    significance=significance,
                    days_before_checkin=later.days_before_checkin,
                    is_weekend=later.is_weekend,
                    season=later.season,
                )
            )
    return events


def classify_alert(
    event: PriceChangeEvent, thresholds: SignificanceThresholds = DEFAULT_THRESHOLDS
) -> tuple[str, AlertPriority]:
    if event.significance is Significance.CRITICAL:
        return "critical_price_change", AlertPriority.HIGH
    if event.is_price_drop and abs(event.delta_pct) >= thresholds.significant_drop:
        return "significant_price_drop", AlertPriority.HIGH
    if event.is_price_drop and event.days_before_checkin <= thresholds.last_minute_days:
        return "last_minute_deal", AlertPriority.MEDIUM
    return "price_change", AlertPriority.NORMAL


def alert_title(event: PriceChangeEvent, entity_name: str, alert_type: str) -> str:
    direction = "drop" if event.is_price_drop else "rise"
    pct = abs(event.delta_pct)
    if alert_type == "critical_price_change":
        return f"Critical: {entity_name} price {direction} {pct:.1f}%"
    if alert_type == "last_minute_deal":
        return f"Last-minute deal: {entity_name} {pct:.1f}% off"
    return f"Price change: {entity_name} {direction} {pct:.1f}%"


def alert_message(event: PriceChangeEvent, entity_name: str) -> str:
    direction = "dropped" if event.is_price_drop else "rose"
    lines = [
        f"{entity_name} price {direction}.",
        f"Change: {event.delta:+,.0f} ({abs(event.delta_pct):.1f}%)",
        f"Current price: {event.current_price:,.0f}",
    ]
    check_in = f"Check-in: {event.check_in.isoformat()}"
    if event.days_before_checkin <= 7:
        check_in += f" ({event.days_before_checkin} days ahead)"
    lines.append(check_in)

    stats = event.statistics
    if stats is not None and stats.z_score is not None and abs(stats.z_score) > UNUSUAL_Z_SCORE:
        lines.append(f"Statistically unusual change (z-score {abs(stats.z_score):.2f})")
    if event.trend is not None and not event.trend.insufficient_data:
        lines.append(f"14-day trend: {event.trend.direction.value}")
    return "\n".join(lines)


def build_price_alert(
    event: PriceChangeEvent,
    *,
    entity_name: str | None = None,
    thresholds: SignificanceThresholds = DEFAULT_THRESHOLDS,
) -> AlertRecord:
    alert_type, priority = classify_alert(event, thresholds)
    name = entity_name or event.entity_id
    return AlertRecord(
        category="price",
        alert_type=alert_type,
        severity=PRIORITY_SEVERITY[priority],
        priority=priority,
        title=alert_title(event, name, alert_type),
        message=alert_message(event, name),
        entity_id=event.entity_id,
        context={
            "event_id": event.id,
            "check_in": event.check_in.isoformat(),
            "check_out": event.check_out.isoformat(),
            "room_category": event.room_category,
            "previous_price": event.previous_price,
            "current_price": event.current_price,
            "delta": event.delta,
            "delta_pct": event.delta_pct,
            "significance": event.significance.value,
            "days_before_checkin": event.days_before_checkin,
            "statistics": event.statistics.model_dump() if event.statistics else None,
            "trend": event.trend.model_dump(mode="json") if event.trend else None,
        },
    )


class InMemoryHistory:
    """History provider over an in-memory list of observations."""

    def __init__(self, observations: Iterable[Observation]) -> None:
        self._groups = group_observations(observations)

    def __call__(self, key: GroupKey, since: datetime, until: datetime) -> list[Observation]:
        return [
            obs for obs in self._groups.get(key, []) if since <= obs.observed_at <= until
        ]


@dataclass
class AnalysisResult:
    events: list[PriceChangeEvent] = field(default_factory=list)
    alerts: list[AlertRecord] = field(default_factory=list)

    @property
    def escalated(self) -> list[PriceChangeEvent]:
        return [event for event in self.events if event.significance.escalates]


class PriceChangeAnalyzer:
    """Turns a batch of observations into change events and price alerts.

    Historical windows are read through ``history``, a callable taking a group
    key and a ``[since, until]`` range. Without one, the batch itself serves as
    history. Windows end at the later observation of each change.
    """

    def __init__(
        self,
        history: HistoryProvider | None = None,
        *,
        thresholds: SignificanceThresholds = DEFAULT_THRESHOLDS,
        statistics_window_days: int = STATISTICS_WINDOW_DAYS,
        trend_window_days: int = TREND_WINDOW_DAYS,
        trend_epsilon: float = DEFAULT_TREND_EPSILON,
    ) -> None:
        self.history = history
        self.thresholds = thresholds
        self.statistics_window = timedelta(days=statistics_window_days)
        self.trend_window = timedelta(days=trend_window_days)
        self.trend_epsilon = trend_epsilon

    def enrich(self, event: PriceChangeEvent, history: HistoryProvider) -> PriceChangeEvent:
        key = (event.entity_id, event.check_in, event.check_out, event.room_category)
        until = event.later_observed_at
        stats_prices = [obs.price for obs in history(key, until - self.statistics_window, until)]
        trend_prices = [obs.price for obs in history(key, until - self.trend_window, until)]
        return event.model_copy(
            update={
                "statistics": summarize(event.current_price, stats_prices),
                "trend": compute_trend(
                    trend_prices, event.current_price, epsilon=self.trend_epsilon
                ),
            }
        )

    def analyze(
        self,
        observations: Sequence[Observation],
        *,
        entity_names: Mapping[str, str] | None = None,
    ) -> AnalysisResult:
        history = self.history or InMemoryHistory(observations)
        names = entity_names or {}
        result = AnalysisResult()

        for event in detect_price_changes(observations, self.thresholds):
            if event.significance.escalates:
                event = self.enrich(event, history)
                result.alerts.append(
                    build_price_alert(
                        event,
                        entity_name=names.get(event.entity_id),
                        thresholds=self.thresholds,
                    )
                )
            result.events.append(event)

        logger.info(
            "Analyzed %s observations: %s changes, %s alerts",
            len(observations),
            len(result.events),
            len(result.alerts),
        )
        return result


__all__ = [
    "AnalysisResult",
    "DEFAULT_THRESHOLDS",
    "HistoryProvider",
    "InMemoryHistory",
    "PriceChangeAnalyzer",
    "SignificanceThresholds",
    "alert_message",
    "alert_title",
    "build_price_alert",
    "classify_alert",
    "classify_significance",
    "detect_price_changes",
    "group_observations",
]
