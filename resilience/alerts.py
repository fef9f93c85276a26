"""Error and alert emission.

The emitter writes ErrorRecords and AlertRecords through a recorder and hands
alerts to a notifier. Delivery (email, chat, paging) belongs to the notifier;
the default one only logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pipelines.model import AlertRecord, ErrorRecord
from resilience.errors import ClassifiedError, Severity

if TYPE_CHECKING:
    from resilience.retry import RetryContext
    from storage.recorder import Recorder

logger = logging.getLogger(__name__)


class AlertNotifier(Protocol):
    def notify(self, alert: AlertRecord) -> None: ...


class LoggingNotifier:
    """Notifier that writes alerts to the application log."""

    def notify(self, alert: AlertRecord) -> None:
        level = logging.ERROR if alert.severity.requires_alert else logging.WARNING
        logger.log(level, "ALERT [%s/%s] %s", alert.category, alert.severity.value, alert.title)


class AlertEmitter:
    def __init__(self, recorder: "Recorder", notifier: AlertNotifier | None = None) -> None:
        self.recorder = recorder
        self.notifier = notifier or LoggingNotifier()

    def emit(self, alert: AlertRecord) -> AlertRecord:
        self.recorder.record_alert(alert)
        try:
            self.notifier.notify(alert)
        except Exception:
            logger.exception("Alert delivery failed for %s (%s)", alert.alert_type, alert.id)
        return alert

    def record_error(
        self,
        error: ClassifiedError,
        context: "RetryContext",
        *,
        attempt: int = 1,
        max_attempts: int = 1,
    ) -> ErrorRecord:
        """Persist one failed attempt; high and critical errors also raise an alert."""

        record = ErrorRecord(
            category=error.category,
            severity=error.severity,
            message=error.message,
            operation=context.operation,
            job_name=context.job_name,
            entity_id=context.entity_id,
            api_source=context.api_source,
            http_status=error.status_code,
            attempt=attempt,
            max_attempts=max_attempts,
            context=dict(context.extra),
        )
        self.recorder.record_error(record)
        if record.severity.requires_alert:
            self.emit(
                AlertRecord(
                    category="error",
                    alert_type="error_alert",
                    severity=record.severity,
                    title=f"{record.severity.value.upper()} error: {record.operation}",
                    message=_format_error_message(record),
                    job_name=record.job_name,
                    entity_id=record.entity_id,
                    context={
                        "error_id": record.id,
                        "category": record.category.value,
                        "http_status": record.http_status,
                        "attempt": record.attempt,
                    },
                )
            )
        return record

    def circuit_opened(
        self, operation: str, failures: int, threshold: int, last_error: str | None
    ) -> AlertRecord:
        return self.emit(
            AlertRecord(
                category="circuit_breaker",
                alert_type="circuit_breaker_open",
                severity=Severity.CRITICAL,
                title=f"Circuit breaker opened: {operation}",
                message=(
                    f"Operation {operation} has failed {failures} consecutive times. "
                    "Circuit breaker is now open."
                ),
                job_name=operation,
                context={
                    "consecutive_failures": failures,
                    "threshold": threshold,
                    "last_error": last_error,
                },
            )
        )

    def job_failing(
        self, job_name: str, consecutive_failures: int, threshold: int, error: str
    ) -> AlertRecord:
        return self.emit(
            AlertRecord(
                category="job_failure",
                alert_type="job_consecutive_failures",
                severity=Severity.CRITICAL,
                title=f"Job {job_name} failed {consecutive_failures} times in a row",
                message=f"{job_name} keeps failing. Last error: {error}",
                job_name=job_name,
                context={
                    "consecutive_failures": consecutive_failures,
                    "threshold": threshold,
                    "last_error": error,
                },
            )
        )


def _format_error_message(record: ErrorRecord) -> str:
    lines: list[Any] = [
        f"Operation: {record.operation}",
        f"Category: {record.category.value}",
        f"Attempt: {record.attempt}/{record.max_attempts}",
        f"Error: {record.message}",
    ]
    if record.http_status is not None:
        lines.append(f"HTTP Status: {record.http_status}")
    if record.entity_id:
        lines.append(f"Entity: {record.entity_id}")
    lines.append(f"Timestamp: {record.occurred_at.isoformat()}")
    return "\n".join(str(line) for line in lines)


__all__ = ["AlertEmitter", "AlertNotifier", "LoggingNotifier"]
