import duckdb
import httpx
import pytest

from resilience.errors import (
    CATEGORY_SEVERITY,
    ClassifiedError,
    ErrorCategory,
    RetryExhaustedError,
    Severity,
    category_for_status,
    classify_error,
)
from resilience.retry import RetryContext


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/Travel/VacantHotelSearch/20170426")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "category"),
    [
        (429, ErrorCategory.RATE_LIMIT),
        (401, ErrorCategory.AUTHENTICATION),
        (403, ErrorCategory.AUTHENTICATION),
        (402, ErrorCategory.QUOTA_EXCEEDED),
        (413, ErrorCategory.QUOTA_EXCEEDED),
        (408, ErrorCategory.TIMEOUT),
        (503, ErrorCategory.NETWORK),
        (400, ErrorCategory.VALIDATION),
    ],
)
def test_http_status_mapping(status, category):
    assert category_for_status(status) is category

    error = classify_error(_status_error(status))
    assert error.category is category
    assert error.status_code == status


def test_exception_types_map_to_categories():
    assert classify_error(httpx.ConnectError("refused")).category is ErrorCategory.NETWORK
    assert classify_error(httpx.ReadTimeout("slow")).category is ErrorCategory.TIMEOUT
    assert classify_error(TimeoutError()).category is ErrorCategory.TIMEOUT
    assert classify_error(duckdb.IOException("locked")).category is ErrorCategory.DATABASE
    assert classify_error(ValueError("bad")).category is ErrorCategory.VALIDATION
    assert classify_error(RuntimeError("??")).category is ErrorCategory.UNKNOWN


def test_classification_is_idempotent():
    original = ClassifiedError(ErrorCategory.QUOTA_EXCEEDED, "quota")
    assert classify_error(original) is original

    exhausted = RetryExhaustedError(original, 3, RetryContext(operation="availability"))
    assert classify_error(exhausted) is original
    assert exhausted.category is ErrorCategory.QUOTA_EXCEEDED


def test_severity_ordering_and_retry_eligibility():
    rank = {category: CATEGORY_SEVERITY[category].rank for category in ErrorCategory}

    assert CATEGORY_SEVERITY[ErrorCategory.AUTHENTICATION] is Severity.CRITICAL
    assert rank[ErrorCategory.AUTHENTICATION] > rank[ErrorCategory.DATABASE]
    assert rank[ErrorCategory.DATABASE] == rank[ErrorCategory.QUOTA_EXCEEDED]
    assert rank[ErrorCategory.QUOTA_EXCEEDED] > rank[ErrorCategory.RATE_LIMIT]
    assert rank[ErrorCategory.RATE_LIMIT] == rank[ErrorCategory.TIMEOUT]
    assert rank[ErrorCategory.TIMEOUT] > rank[ErrorCategory.NETWORK]

    assert not ClassifiedError(ErrorCategory.AUTHENTICATION, "x").retryable
    assert not ClassifiedError(ErrorCategory.VALIDATION, "x").retryable
    for category in (
        ErrorCategory.NETWORK,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.TIMEOUT,
        ErrorCategory.DATABASE,
        ErrorCategory.QUOTA_EXCEEDED,
        ErrorCategory.UNKNOWN,
    ):
        assert ClassifiedError(category, "x").retryable
