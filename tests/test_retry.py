import asyncio

import pytest

from conftest import FakeClock
from resilience.alerts import AlertEmitter
from resilience.circuit import CircuitBreakerRegistry
from resilience.errors import (
    ClassifiedError,
    ErrorCategory,
    RetryExhaustedError,
    Severity,
)
from resilience.retry import (
    RetryConfig,
    RetryContext,
    RetryExecutor,
    compute_backoff_delay,
    wait_backoff_with_jitter,
)
from storage.recorder import MemoryRecorder


def _executor(clock: FakeClock, recorder: MemoryRecorder, **kwargs) -> RetryExecutor:
    emitter = AlertEmitter(recorder)
    breakers = CircuitBreakerRegistry(emitter=emitter, clock=clock)
    return RetryExecutor(
        emitter=emitter, breakers=breakers, sleep=clock.sleep, rng=lambda: 0.0, **kwargs
    )


def _failing(category: ErrorCategory, calls: list[int], status: int | None = None):
    async def operation():
        calls.append(1)
        raise ClassifiedError(category, f"{category.value} failure", status_code=status)

    return operation


def test_backoff_is_monotonic_and_capped():
    config = RetryConfig(base_delay=1.0, max_delay=30.0, backoff_multiplier=2.0)

    delays = [compute_backoff_delay(attempt, config) for attempt in range(1, 9)]

    assert delays[:6] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert max(delays) == 30.0


def test_jitter_adds_at_most_ten_percent():
    class _State:
        attempt_number = 3

    config = RetryConfig()
    no_jitter = wait_backoff_with_jitter(config, rng=lambda: 0.0)(_State())
    full_jitter = wait_backoff_with_jitter(config, rng=lambda: 0.999)(_State())
    disabled = wait_backoff_with_jitter(RetryConfig(jitter=False), rng=lambda: 0.999)(_State())

    assert no_jitter == 4.0
    assert 4.0 < full_jitter < 4.4
    assert disabled == 4.0


def test_network_failures_exhaust_after_three_attempts(clock, recorder):
    executor = _executor(clock, recorder)
    calls: list[int] = []
    context = RetryContext(operation="availability", job_name="availability")

    with pytest.raises(RetryExhaustedError) as excinfo:
        asyncio.run(executor.run(_failing(ErrorCategory.NETWORK, calls), context))

    assert len(calls) == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.last_error.category is ErrorCategory.NETWORK
    assert excinfo.value.context is context
    assert not isinstance(excinfo.value, ClassifiedError)
    # two backoff waits between three attempts
    assert clock.sleeps == [1.0, 2.0]
    assert [error.attempt for error in recorder.errors] == [1, 2, 3]
    assert all(error.max_attempts == 3 for error in recorder.errors)


def test_authentication_failure_is_attempted_once(clock, recorder):
    executor = _executor(clock, recorder)
    calls: list[int] = []

    with pytest.raises(ClassifiedError) as excinfo:
        asyncio.run(
            executor.run(
                _failing(ErrorCategory.AUTHENTICATION, calls, status=401),
                RetryContext(operation="full"),
                RetryConfig(max_attempts=5),
            )
        )

    assert len(calls) == 1
    assert excinfo.value.category is ErrorCategory.AUTHENTICATION
    assert clock.sleeps == []
    # critical error record raises an alert
    assert recorder.errors[0].severity is Severity.CRITICAL
    assert [alert.alert_type for alert in recorder.alerts] == ["error_alert"]


def test_terminal_failures_feed_the_breaker_but_retried_attempts_do_not(clock, recorder):
    executor = _executor(clock, recorder)
    calls: list[int] = []

    with pytest.raises(RetryExhaustedError):
        asyncio.run(executor.run(_failing(ErrorCategory.NETWORK, calls), RetryContext(operation="full")))
    # three attempts, one terminal failure
    assert executor.breakers.state("full").consecutive_failures == 1

    with pytest.raises(ClassifiedError):
        asyncio.run(
            executor.run(
                _failing(ErrorCategory.AUTHENTICATION, calls, status=401),
                RetryContext(operation="full"),
            )
        )
    assert executor.breakers.state("full").consecutive_failures == 2


def test_validation_failure_is_not_retried(clock, recorder):
    executor = _executor(clock, recorder)
    calls: list[int] = []

    with pytest.raises(ClassifiedError):
        asyncio.run(
            executor.run(_failing(ErrorCategory.VALIDATION, calls), RetryContext(operation="x"))
        )

    assert len(calls) == 1


def test_rate_limit_uses_full_backoff_schedule(clock, recorder):
    executor = _executor(clock, recorder)
    calls: list[int] = []

    with pytest.raises(RetryExhaustedError):
        asyncio.run(
            executor.run(
                _failing(ErrorCategory.RATE_LIMIT, calls, status=429),
                RetryContext(operation="availability"),
                RetryConfig(max_attempts=4),
            )
        )

    assert len(calls) == 4
    assert clock.sleeps == [1.0, 2.0, 4.0]


def test_transient_failure_then_success(clock, recorder):
    executor = _executor(clock, recorder)
    attempts: list[int] = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 2:
            raise ConnectionError("connection reset")
        return {"ok": True}

    result = asyncio.run(executor.run(flaky, RetryContext(operation="availability")))

    assert result == {"ok": True}
    assert len(attempts) == 2
    assert recorder.errors[0].category is ErrorCategory.NETWORK
    assert executor.breakers.state("availability").consecutive_failures == 0


def test_raw_exceptions_are_classified_once(clock, recorder):
    executor = _executor(clock, recorder)

    async def broken():
        raise ValueError("unexpected payload shape")

    with pytest.raises(ClassifiedError) as excinfo:
        asyncio.run(executor.run(broken, RetryContext(operation="analysis")))

    assert excinfo.value.category is ErrorCategory.VALIDATION
    assert isinstance(excinfo.value.__cause__, ValueError)
