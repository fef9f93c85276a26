"""Per-operation circuit breakers.

State lives in the registry instance only; it is rebuilt from zero whenever the
process restarts. Mutations happen on the event loop thread between suspension
points, so no locking is used.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from resilience.alerts import AlertEmitter

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_SECONDS = 300.0


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    last_error: str | None = None


class CircuitBreakerRegistry:
    """Tracks consecutive terminal failures per operation name.

    The breaker for a name opens when its counter reaches ``failure_threshold``
    and raises a single critical alert for that transition. Any success resets
    the counter and closes it. An open breaker admits a trial run once
    ``recovery_seconds`` have passed since the last failure.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_seconds: float = DEFAULT_RECOVERY_SECONDS,
        emitter: "AlertEmitter | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_seconds = recovery_seconds
        self.emitter = emitter
        self._clock = clock
        self._states: dict[str, CircuitBreakerState] = {}

    def state(self, name: str) -> CircuitBreakerState:
        return self._states.get(name, CircuitBreakerState())

    def is_open(self, name: str) -> bool:
        return self.state(name).state is CircuitState.OPEN

    def allow_request(self, name: str) -> bool:
        current = self.state(name)
        if current.state is CircuitState.CLOSED:
            return True
        elapsed = self._clock() - (current.last_failure_at or 0.0)
        if elapsed >= self.recovery_seconds:
            logger.info("Circuit for %s admits a trial run after %.0fs", name, elapsed)
            return True
        return False

    def record_success(self, name: str) -> None:
        current = self._states.pop(name, None)
        if current is not None and current.state is CircuitState.OPEN:
            logger.info("Circuit CLOSED for %s after a successful call", name)

    def record_failure(self, name: str, error: str | None = None) -> bool:
        """Count a terminal failure. Returns True when this call opened the breaker."""

        current = self.state(name)
        updated = replace(
            current,
            consecutive_failures=current.consecutive_failures + 1,
            last_failure_at=self._clock(),
            last_error=error,
        )
        opened = (
            current.state is CircuitState.CLOSED
            and updated.consecutive_failures >= self.failure_threshold
        )
        if opened:
            updated = replace(updated, state=CircuitState.OPEN)
            logger.error(
                "Circuit OPENED for %s after %s consecutive failures. Last error: %s",
                name,
                updated.consecutive_failures,
                error,
            )
        self._states[name] = updated
        if opened and self.emitter is not None:
            self.emitter.circuit_opened(
                name, updated.consecutive_failures, self.failure_threshold, error
            )
        return opened

    def reset(self, name: str | None = None) -> None:
        if name is None:
            self._states.clear()
        else:
            self._states.pop(name, None)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "state": state.state.value,
                "consecutive_failures": state.consecutive_failures,
                "last_error": state.last_error,
            }
            for name, state in self._states.items()
        }

    def open_circuits(self) -> list[str]:
        return [name for name, state in self._states.items() if state.state is CircuitState.OPEN]


__all__ = [
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "DEFAULT_FAILURE_THRESHOLD",
    "DEFAULT_RECOVERY_SECONDS",
]
