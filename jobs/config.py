"""Static city targets and environment-driven crawler settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Iterable, Mapping

from dotenv import load_dotenv


@dataclass(frozen=True)
class CityConfig:
    """A city centre around which luxury hotels are discovered."""

    key: str
    name: str
    latitude: float
    longitude: float
    area_code: str


TARGET_CITIES: tuple[CityConfig, ...] = (
    CityConfig(key="tokyo", name="Tokyo", latitude=35.6762, longitude=139.6503, area_code="130000"),
    CityConfig(key="osaka", name="Osaka", latitude=34.6937, longitude=135.5023, area_code="270000"),
    CityConfig(key="kyoto", name="Kyoto", latitude=35.0116, longitude=135.7681, area_code="260000"),
    CityConfig(
        key="yokohama", name="Yokohama", latitude=35.4437, longitude=139.6380, area_code="140000"
    ),
    CityConfig(
        key="fukuoka", name="Fukuoka", latitude=33.5904, longitude=130.4017, area_code="400000"
    ),
    CityConfig(
        key="okinawa", name="Okinawa", latitude=26.2124, longitude=127.6792, area_code="470000"
    ),
)


def get_city_by_key(key: str) -> CityConfig | None:
    for city in TARGET_CITIES:
        if city.key == key:
            return city
    return None


def iter_cities(keys: Iterable[str] | None = None) -> tuple[CityConfig, ...]:
    if keys is None:
        return TARGET_CITIES
    selected = []
    for key in keys:
        city = get_city_by_key(key)
        if city:
            selected.append(city)
    return tuple(selected)


@dataclass(frozen=True)
class Schedules:
    """Cron expressions (minute hour day month day-of-week) per job."""

    availability: str = "*/15 6-23 * * *"
    offpeak: str = "0 0-5 * * *"
    full: str = "0 5 * * *"
    cleanup: str = "0 2 * * sun"
    analysis: str = "30 * * * *"
    report: str = "0 6 * * *"


@dataclass(frozen=True)
class CrawlerSettings:
    api_base_url: str = "https://app.rakuten.co.jp/services/api"
    application_id: str | None = None
    api_key: str | None = None
    api_source: str = "rakuten"
    rate_limit_delay: float = 1.0
    offpeak_rate_limit_delay: float = 2.0
    request_timeout: float = 30.0
    batch_size: int = 50
    search_days: int = 7
    last_minute_horizon_days: int = 3
    max_concurrent_jobs: int = 1
    job_failure_threshold: int = 5
    circuit_breaker_threshold: int = 5
    circuit_breaker_recovery_seconds: float = 300.0
    log_retention_days: int = 7
    usage_retention_days: int = 30
    observation_retention_days: int = 60
    timezone: str = "Asia/Tokyo"
    cities: tuple[CityConfig, ...] = TARGET_CITIES
    db_path: Path = Path("data/inventory.duckdb")
    scheduler_enabled: bool = False
    schedules: Schedules = field(default_factory=Schedules)

    @property
    def default_params(self) -> dict[str, str]:
        """Query parameters sent with every upstream request."""

        params = {"format": "json"}
        if self.application_id:
            params["applicationId"] = self.application_id
        if self.api_key:
            params["affiliateId"] = self.api_key
        return params

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CrawlerSettings":
        """Build settings from ``environ`` (``os.environ`` after loading ``.env``)."""

        if environ is None:
            load_dotenv()
            environ = os.environ
        env = environ
        defaults = cls()

        def _str(name: str, default: str | None) -> str | None:
            value = env.get(name)
            return value.strip() if value and value.strip() else default

        def _float(name: str, default: float) -> float:
            value = _str(name, None)
            return float(value) if value is not None else default

        def _int(name: str, default: int) -> int:
            value = _str(name, None)
            return int(value) if value is not None else default

        def _bool(name: str, default: bool) -> bool:
            value = _str(name, None)
            if value is None:
                return default
            return value.lower() in {"1", "true", "yes", "on"}

        schedules = Schedules(
            **{
                name: _str(f"SCHEDULE_{name.upper()}", getattr(defaults.schedules, name))
                for name in (item.name for item in fields(Schedules))
            }
        )

        cities = defaults.cities
        requested = _str("CRAWL_CITIES", None)
        if requested:
            keys = [key.strip() for key in requested.split(",") if key.strip()]
            unknown = sorted(set(keys) - {city.key for city in TARGET_CITIES})
            if unknown:
                raise ValueError(f"Unknown city keys in CRAWL_CITIES: {', '.join(unknown)}")
            cities = iter_cities(keys)

        return cls(
            api_base_url=_str("INVENTORY_API_BASE_URL", defaults.api_base_url),
            application_id=_str("INVENTORY_APPLICATION_ID", None),
            api_key=_str("INVENTORY_API_KEY", None),
            api_source=_str("INVENTORY_API_SOURCE", defaults.api_source),
            rate_limit_delay=_float("RATE_LIMIT_DELAY_SECONDS", defaults.rate_limit_delay),
            offpeak_rate_limit_delay=_float(
                "OFFPEAK_RATE_LIMIT_DELAY_SECONDS", defaults.offpeak_rate_limit_delay
            ),
            request_timeout=_float("REQUEST_TIMEOUT_SECONDS", defaults.request_timeout),
            batch_size=_int("CRAWL_BATCH_SIZE", defaults.batch_size),
            search_days=_int("SEARCH_DAYS", defaults.search_days),
            last_minute_horizon_days=_int(
                "LAST_MINUTE_HORIZON_DAYS", defaults.last_minute_horizon_days
            ),
            max_concurrent_jobs=_int("MAX_CONCURRENT_JOBS", defaults.max_concurrent_jobs),
            job_failure_threshold=_int("JOB_FAILURE_THRESHOLD", defaults.job_failure_threshold),
            circuit_breaker_threshold=_int(
                "CIRCUIT_BREAKER_THRESHOLD", defaults.circuit_breaker_threshold
            ),
            circuit_breaker_recovery_seconds=_float(
                "CIRCUIT_BREAKER_RECOVERY_SECONDS", defaults.circuit_breaker_recovery_seconds
            ),
            log_retention_days=_int("LOG_RETENTION_DAYS", defaults.log_retention_days),
            usage_retention_days=_int("USAGE_RETENTION_DAYS", defaults.usage_retention_days),
            observation_retention_days=_int(
                "OBSERVATION_RETENTION_DAYS", defaults.observation_retention_days
            ),
            timezone=_str("SCHEDULER_TIMEZONE", defaults.timezone),
            cities=cities,
            db_path=Path(_str("INVENTORY_DB_PATH", str(defaults.db_path))),
            scheduler_enabled=_bool("SCHEDULER_ENABLED", defaults.scheduler_enabled),
            schedules=schedules,
        )


__all__ = [
    "CityConfig",
    "CrawlerSettings",
    "Schedules",
    "TARGET_CITIES",
    "get_city_by_key",
    "iter_cities",
]
