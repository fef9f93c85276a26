"""Error taxonomy shared by the API client, retry executor and job orchestrator.

Raw failures are converted into a :class:`ClassifiedError` exactly once, at the
client boundary, by :func:`classify_error`. Everything downstream (retry
eligibility, severity, alert routing) reads the category instead of
re-inspecting HTTP responses or exception messages.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Any

import duckdb
import httpx
from pydantic import ValidationError

if TYPE_CHECKING:
    from resilience.retry import RetryContext


class ErrorCategory(str, Enum):
    NETWORK = "network"
    RATE_LIMIT = "rate-limit"
    QUOTA_EXCEEDED = "quota-exceeded"
    AUTHENTICATION = "authentication"
    DATABASE = "database"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def requires_alert(self) -> bool:
        return self.rank >= _SEVERITY_RANK[Severity.HIGH]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

CATEGORY_SEVERITY: dict[ErrorCategory, Severity] = {
    ErrorCategory.AUTHENTICATION: Severity.CRITICAL,
    ErrorCategory.DATABASE: Severity.HIGH,
    ErrorCategory.QUOTA_EXCEEDED: Severity.HIGH,
    ErrorCategory.RATE_LIMIT: Severity.MEDIUM,
    ErrorCategory.TIMEOUT: Severity.MEDIUM,
    ErrorCategory.NETWORK: Severity.LOW,
    ErrorCategory.VALIDATION: Severity.LOW,
    ErrorCategory.UNKNOWN: Severity.LOW,
}

# Never retried
PERMANENT_CATEGORIES = frozenset({ErrorCategory.AUTHENTICATION, ErrorCategory.VALIDATION})


def category_for_status(status: int) -> ErrorCategory:
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status in (402, 413):
        return ErrorCategory.QUOTA_EXCEEDED
    if status == 408:
        return ErrorCategory.TIMEOUT
    if status >= 500:
        return ErrorCategory.NETWORK
    if 400 <= status < 500:
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


class ClassifiedError(Exception):
    """A failure tagged with one of the closed :class:`ErrorCategory` values."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @property
    def severity(self) -> Severity:
        return CATEGORY_SEVERITY[self.category]

    @property
    def retryable(self) -> bool:
        return self.category not in PERMANENT_CATEGORIES

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(category={self.category.value!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )


class RetryExhaustedError(Exception):
    """Raised once every attempt of a retried operation has failed.

    Intentionally not a :class:`ClassifiedError` subclass so callers can tell a
    permanent failure (raised as-is, attempted once) from one that was retried.
    """

    def __init__(
        self,
        last_error: ClassifiedError,
        attempts: int,
        context: "RetryContext",
    ) -> None:
        super().__init__(
            f"Retry exhausted after {attempts} attempts for {context.operation}: "
            f"{last_error.message}"
        )
        self.last_error = last_error
        self.attempts = attempts
        self.context = context

    @property
    def category(self) -> ErrorCategory:
        return self.last_error.category


class CircuitOpenError(Exception):
    """Raised when new work is requested for an operation whose breaker is open."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Circuit breaker is open for operation: {operation}")
        self.operation = operation


def classify_error(exc: BaseException) -> ClassifiedError:
    """Convert an arbitrary failure into a :class:`ClassifiedError`."""

    if isinstance(exc, ClassifiedError):
        return exc
    if isinstance(exc, RetryExhaustedError):
        return exc.last_error

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ClassifiedError(
            category_for_status(status),
            f"HTTP {status} from {exc.request.url}",
            status_code=status,
        )
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ClassifiedError(ErrorCategory.TIMEOUT, message)
    if isinstance(exc, duckdb.Error):
        return ClassifiedError(ErrorCategory.DATABASE, message)
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return ClassifiedError(ErrorCategory.NETWORK, message)
    if isinstance(exc, (ValidationError, ValueError)):
        return ClassifiedError(ErrorCategory.VALIDATION, message)
    return ClassifiedError(ErrorCategory.UNKNOWN, message)


__all__ = [
    "CATEGORY_SEVERITY",
    "CircuitOpenError",
    "ClassifiedError",
    "ErrorCategory",
    "PERMANENT_CATEGORIES",
    "RetryExhaustedError",
    "Severity",
    "category_for_status",
    "classify_error",
]
