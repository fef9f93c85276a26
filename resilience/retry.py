"""Retry executor with capped exponential backoff, jitter and circuit breaking."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from resilience.alerts import AlertEmitter
from resilience.circuit import CircuitBreakerRegistry
from resilience.errors import ClassifiedError, RetryExhaustedError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.1


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters. Delays are expressed in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def with_overrides(self, **overrides: Any) -> "RetryConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@dataclass(frozen=True)
class RetryContext:
    """Identifies the unit of work for logging and breaker bookkeeping."""

    operation: str
    job_name: str | None = None
    entity_id: str | None = None
    api_source: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


def compute_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay after the given failed attempt (1-based), before jitter."""

    delay = config.base_delay * config.backoff_multiplier ** (attempt - 1)
    return min(config.max_delay, delay)


class wait_backoff_with_jitter(wait_base):
    """Tenacity wait strategy: capped exponential backoff plus up to 10% jitter."""

    def __init__(self, config: RetryConfig, rng: Callable[[], float] = random.random) -> None:
        self.config = config
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = compute_backoff_delay(retry_state.attempt_number, self.config)
        if self.config.jitter:
            delay += delay * JITTER_RATIO * self.rng()
        return delay


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClassifiedError) and exc.retryable


class RetryExecutor:
    """Runs zero-argument coroutines under the retry policy.

    Every failed attempt is classified and recorded. Permanent categories are
    raised as-is after one attempt; transient ones are retried and, once all
    attempts are spent, surface as :class:`RetryExhaustedError`. Terminal
    failures and successes feed the circuit breaker for ``context.operation``.
    """

    def __init__(
        self,
        *,
        config: RetryConfig | None = None,
        emitter: AlertEmitter | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or RetryConfig()
        self.emitter = emitter
        self.breakers = breakers
        self._sleep = sleep
        self._rng = rng

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: RetryContext,
        config: RetryConfig | None = None,
    ) -> T:
        cfg = config or self.config
        attempts = 0

        async def attempt() -> T:
            nonlocal attempts
            attempts += 1
            try:
                return await operation()
            except Exception as exc:
                error = classify_error(exc)
                logger.warning(
                    "%s failed (attempt %s/%s, %s): %s",
                    context.operation,
                    attempts,
                    cfg.max_attempts,
                    error.category.value,
                    error.message,
                )
                if self.emitter is not None:
                    self.emitter.record_error(
                        error, context, attempt=attempts, max_attempts=cfg.max_attempts
                    )
                if error is exc:
                    raise
                raise error from exc

        def before_sleep(retry_state: RetryCallState) -> None:
            if retry_state.next_action is not None:
                logger.info(
                    "Retrying %s in %.2fs (attempt %s/%s)",
                    context.operation,
                    retry_state.next_action.sleep,
                    retry_state.attempt_number + 1,
                    cfg.max_attempts,
                )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(cfg.max_attempts),
            wait=wait_backoff_with_jitter(cfg, self._rng),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep,
            sleep=self._sleep,
        )

        try:
            result = await retrying(attempt)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            error = classify_error(last) if last is not None else classify_error(exc)
            logger.error(
                "%s exhausted %s attempts: %s", context.operation, attempts, error.message
            )
            self._record_terminal_failure(context, error)
            raise RetryExhaustedError(error, attempts, context) from error
        except ClassifiedError as exc:
            logger.error(
                "%s failed permanently (%s): %s",
                context.operation,
                exc.category.value,
                exc.message,
            )
            self._record_terminal_failure(context, exc)
            raise

        if self.breakers is not None:
            self.breakers.record_success(context.operation)
        return result

    def _record_terminal_failure(self, context: RetryContext, error: ClassifiedError) -> None:
        if self.breakers is not None:
            self.breakers.record_failure(context.operation, error.message)


__all__ = [
    "RetryConfig",
    "RetryContext",
    "RetryExecutor",
    "compute_backoff_delay",
    "wait_backoff_with_jitter",
]
