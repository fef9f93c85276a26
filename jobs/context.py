"""Execution context handed to every job body."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

import duckdb
import httpx

from jobs.config import CrawlerSettings
from pipelines.client import RateLimitedClient
from resilience.alerts import AlertEmitter
from resilience.circuit import CircuitBreakerRegistry
from resilience.errors import CircuitOpenError
from resilience.retry import RetryExecutor
from storage import db


@dataclass
class JobStats:
    """Sub-item counts reported by a job body."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "JobStats") -> "JobStats":
        return JobStats(
            processed=self.processed + other.processed,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            details={**self.details, **other.details},
        )


@dataclass
class JobContext:
    job_name: str
    trigger: str
    settings: CrawlerSettings
    executor: RetryExecutor
    breakers: CircuitBreakerRegistry
    emitter: AlertEmitter
    transport: httpx.AsyncBaseTransport | None = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    now: Callable[[], datetime] = lambda: datetime.now(UTC)

    def connect(self) -> duckdb.DuckDBPyConnection:
        return db.connect(self.settings.db_path)

    def client(self, *, rate_limit_delay: float | None = None) -> RateLimitedClient:
        """Upstream client whose breaker and usage are attributed to this job."""

        return RateLimitedClient(
            self.settings.api_base_url,
            executor=self.executor,
            operation=self.job_name,
            job_name=self.job_name,
            api_source=self.settings.api_source,
            rate_limit_delay=(
                self.settings.rate_limit_delay if rate_limit_delay is None else rate_limit_delay
            ),
            timeout=self.settings.request_timeout,
            default_params=self.settings.default_params,
            transport=self.transport,
            sleep=self.sleep,
        )

    def ensure_circuit_closed(self) -> None:
        if not self.breakers.allow_request(self.job_name):
            raise CircuitOpenError(self.job_name)


JobFunc = Callable[[JobContext], Awaitable[JobStats]]


__all__ = ["JobContext", "JobFunc", "JobStats"]
