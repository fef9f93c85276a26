"""Canonical data model for inventory and operational records."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from resilience.errors import ErrorCategory, Severity


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class TrackedEntity(BaseModel):
    """A hotel tracked by the crawler, keyed by its upstream identifier."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    external_id: str = Field(
        ..., description="Stable upstream identifier (e.g. 'rakuten_123456')."
    )
    api_source: str = Field(..., description="Upstream API the entity was discovered through.")
    api_hotel_id: str = Field(..., description="Hotel number as used in upstream requests.")
    name: str = Field(..., description="Human-readable hotel name.")
    city: str | None = Field(default=None, description="Configured city the entity belongs to.")
    address: str | None = None
    latitude: float = Field(..., description="WGS84 latitude.")
    longitude: float = Field(..., description="WGS84 longitude.")
    hotel_class: int = Field(default=4, ge=1, le=5)
    priority: int = Field(
        default=1, description="Crawl priority rank; lower values are crawled first."
    )
    is_active: bool = True
    last_crawled_at: datetime | None = None


class Observation(BaseModel):
    """One price/availability reading for an entity, stay window and room category."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(default_factory=_new_id)
    entity_id: str = Field(..., description="``TrackedEntity.external_id`` of the hotel.")
    check_in: date
    check_out: date
    room_category: str = Field(..., description="Upstream room class code.")
    room_name: str | None = None
    price: float = Field(..., gt=0, description="Total price for the stay window.")
    available_units: int = Field(default=0, ge=0)
    is_last_minute: bool = Field(
        default=False,
        description="True when check-in falls within the configured last-minute horizon.",
    )
    days_before_checkin: int = 0
    day_of_week: int = Field(default=0, ge=0, le=6, description="Monday is 0.")
    season: str = "winter"
    is_weekend: bool = False
    api_source: str = "rakuten"
    observed_at: datetime = Field(default_factory=utcnow)
    raw_payload: Optional[Any] = Field(
        default=None,
        description="Raw upstream payload segment retained for traceability and debugging.",
    )

    @property
    def group_key(self) -> tuple[str, date, date, str]:
        return (self.entity_id, self.check_in, self.check_out, self.room_category)


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRun(BaseModel):
    """A single execution of a named scheduled job."""

    id: str = Field(default_factory=_new_id)
    job_name: str
    status: JobStatus = JobStatus.RUNNING
    trigger: str = Field(default="schedule", description="'schedule' or 'manual'.")
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    processed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    duration_seconds: float | None = None
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _failed_within_processed(self) -> "JobRun":
        if self.failed > self.processed:
            raise ValueError(
                f"failed count ({self.failed}) exceeds processed count ({self.processed})"
            )
        return self

    def finish(
        self,
        status: JobStatus,
        *,
        processed: int = 0,
        succeeded: int = 0,
        failed: int = 0,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
        finished_at: datetime | None = None,
    ) -> "JobRun":
        """Return the terminal copy of a running job."""

        if self.status is not JobStatus.RUNNING:
            raise ValueError(f"job run {self.id} already finished with {self.status.value}")
        end = finished_at or utcnow()
        return self.model_copy(
            update={
                "status": status,
                "finished_at": end,
                "duration_seconds": (end - self.started_at).total_seconds(),
                "processed": processed,
                "succeeded": succeeded,
                "failed": min(failed, processed),
                "error_message": error_message,
                "details": details or {},
            }
        )


class ErrorRecord(BaseModel):
    """Write-once log entry for a failed attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    category: ErrorCategory
    severity: Severity
    message: str
    operation: str
    job_name: str | None = None
    entity_id: str | None = None
    api_source: str | None = None
    http_status: int | None = None
    attempt: int = 1
    max_attempts: int = 1
    occurred_at: datetime = Field(default_factory=utcnow)
    context: dict[str, Any] = Field(default_factory=dict)


class AlertPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    NORMAL = "normal"


class AlertRecord(BaseModel):
    """Structured alert handed to the external notifier."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    category: str = Field(
        ...,
        description="Alert family: 'error', 'circuit_breaker', 'job_failure' or 'price'.",
    )
    alert_type: str
    severity: Severity
    priority: AlertPriority | None = None
    title: str
    message: str
    job_name: str | None = None
    entity_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    context: dict[str, Any] = Field(default_factory=dict)


class ApiUsage(BaseModel):
    """Per-hour call accounting for one upstream API source."""

    api_source: str
    date: date
    hour: int = Field(..., ge=0, le=23)
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    avg_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if not self.total_calls:
            return 0.0
        return self.successful_calls / self.total_calls * 100


__all__ = [
    "AlertPriority",
    "AlertRecord",
    "ApiUsage",
    "ErrorRecord",
    "JobRun",
    "JobStatus",
    "Observation",
    "TrackedEntity",
    "utcnow",
]
