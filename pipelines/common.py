"""Shared utilities for normalizing upstream inventory responses."""

from __future__ import annotations

import math
from datetime import date
from typing import Any

DEFAULT_TIMEOUT_SECONDS = 30.0

_SENTINEL_VALUES = {"", "NA", "N/A", "null", "-"}


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        stripped = value.strip().replace(",", "")
        if stripped in _SENTINEL_VALUES:
            return None
        try:
            numeric = float(stripped)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def coerce_int(value: Any) -> int | None:
    numeric = coerce_float(value)
    return int(numeric) if numeric is not None else None


def season_for(day: date) -> str:
    month = day.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "autumn"
    return "winter"


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "coerce_float", "coerce_int", "is_weekend", "season_for"]
