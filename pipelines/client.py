"""Rate-limited HTTP client for the upstream travel-inventory API.

Outbound calls from one client instance are serialized and spaced by at least
``rate_limit_delay`` seconds. Each call runs under the retry executor; failures
are classified here, at the boundary, so nothing downstream has to look at
``httpx`` exceptions. An HTTP 429 additionally waits a fixed cooldown before the
executor's own backoff applies.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Mapping

import httpx

from pipelines.common import DEFAULT_TIMEOUT_SECONDS
from pipelines.model import ApiUsage
from resilience.errors import ErrorCategory, classify_error
from resilience.retry import RetryConfig, RetryContext, RetryExecutor

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_DELAY = 1.0
RATE_LIMIT_COOLDOWN_SECONDS = 5.0
USER_AGENT = "hotel-inventory-watch/0.1"


class UsageTracker:
    """In-process call accounting keyed by (api source, date, hour)."""

    def __init__(
        self, api_source: str, *, now: Callable[[], datetime] = lambda: datetime.now(UTC)
    ) -> None:
        self.api_source = api_source
        self._now = now
        self._buckets: dict[tuple[str, Any, int], ApiUsage] = {}

    def record(self, *, success: bool, response_time_ms: float) -> ApiUsage:
        moment = self._now()
        key = (self.api_source, moment.date(), moment.hour)
        current = self._buckets.get(key) or ApiUsage(
            api_source=self.api_source, date=moment.date(), hour=moment.hour
        )
        total = current.total_calls + 1
        updated = current.model_copy(
            update={
                "total_calls": total,
                "successful_calls": current.successful_calls + (1 if success else 0),
                "failed_calls": current.failed_calls + (0 if success else 1),
                "avg_response_time_ms": (
                    current.avg_response_time_ms * current.total_calls + response_time_ms
                )
                / total,
            }
        )
        self._buckets[key] = updated
        return updated

    def snapshot(self) -> list[ApiUsage]:
        return sorted(self._buckets.values(), key=lambda row: (row.date, row.hour))

    def drain(self) -> list[ApiUsage]:
        """Return the accumulated rows and start counting from zero again."""

        rows = self.snapshot()
        self._buckets.clear()
        return rows


class RateLimitedClient:
    def __init__(
        self,
        base_url: str,
        *,
        executor: RetryExecutor,
        operation: str,
        job_name: str | None = None,
        api_source: str = "rakuten",
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        default_params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        usage: UsageTracker | None = None,
        rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url
        self.executor = executor
        self.operation = operation
        self.job_name = job_name or operation
        self.api_source = api_source
        self.rate_limit_delay = rate_limit_delay
        self.timeout = timeout
        self.default_params = dict(default_params or {})
        self.headers = {"User-Agent": USER_AGENT, "Accept": "application/json", **(headers or {})}
        self.retry_config = retry_config or RetryConfig(max_attempts=3)
        self.usage = usage or UsageTracker(api_source)
        self.rate_limit_cooldown = rate_limit_cooldown
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_call_at: float | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RateLimitedClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        entity_id: str | None = None,
    ) -> Any:
        """Issue a GET under the retry policy and return the decoded JSON payload."""

        context = RetryContext(
            operation=self.operation,
            job_name=self.job_name,
            entity_id=entity_id,
            api_source=self.api_source,
            extra={"endpoint": endpoint},
        )
        return await self.executor.run(
            lambda: self._request(endpoint, params), context, self.retry_config
        )

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            if self._last_call_at is not None:
                remaining = self.rate_limit_delay - (self._clock() - self._last_call_at)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_call_at = self._clock()

    async def _request(self, endpoint: str, params: Mapping[str, Any] | None) -> Any:
        if self._client is None:
            raise RuntimeError("RateLimitedClient must be used as an async context manager")

        await self._wait_for_slot()
        request_params = {**self.default_params, **(params or {})}
        started = self._clock()
        try:
            response = await self._client.get(endpoint, params=request_params)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            self._track(success=False, started=started)
            error = classify_error(exc)
            if error.category is ErrorCategory.RATE_LIMIT:
                logger.warning(
                    "Rate limited on %s; cooling down %.1fs", endpoint, self.rate_limit_cooldown
                )
                await self._sleep(self.rate_limit_cooldown)
            raise error from exc

        self._track(success=True, started=started)
        return payload

    def _track(self, *, success: bool, started: float) -> None:
        elapsed_ms = max(0.0, (self._clock() - started) * 1000)
        self.usage.record(success=success, response_time_ms=elapsed_ms)


__all__ = [
    "DEFAULT_RATE_LIMIT_DELAY",
    "RATE_LIMIT_COOLDOWN_SECONDS",
    "RateLimitedClient",
    "UsageTracker",
]
