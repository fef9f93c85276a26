from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

import pytest

from jobs.config import CrawlerSettings
from pipelines.model import Observation
from storage.recorder import MemoryRecorder

FIXED_NOW = datetime(2025, 7, 10, 9, 0, tzinfo=UTC)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def recorder() -> MemoryRecorder:
    return MemoryRecorder()


@pytest.fixture()
def settings(tmp_path) -> CrawlerSettings:
    return replace(
        CrawlerSettings(),
        db_path=tmp_path / "inventory.duckdb",
        application_id="test-app",
        rate_limit_delay=0.0,
        offpeak_rate_limit_delay=0.0,
    )


def make_observation(
    price: float,
    *,
    minutes: int = 0,
    entity_id: str = "rakuten_1001",
    check_in: date = date(2025, 7, 12),
    room_category: str = "deluxe",
    days_before_checkin: int = 2,
    observed_at: datetime | None = None,
) -> Observation:
    return Observation(
        entity_id=entity_id,
        check_in=check_in,
        check_out=check_in + timedelta(days=1),
        room_category=room_category,
        price=price,
        available_units=3,
        days_before_checkin=days_before_checkin,
        is_last_minute=days_before_checkin <= 3,
        day_of_week=check_in.weekday(),
        season="summer",
        is_weekend=check_in.weekday() >= 5,
        observed_at=observed_at or FIXED_NOW + timedelta(minutes=minutes),
    )
