"""Job orchestrator and cron timers.

The orchestrator owns every piece of mutable scheduling state: the set of
running job names, per-job consecutive failure counters and the circuit breaker
registry. Timers and the manual trigger both go through :meth:`Orchestrator.run_job`.
A job that cannot start (same name already running, concurrency ceiling
reached, breaker open) is skipped, never queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from jobs.analyze import analyze_recent_changes
from jobs.config import CrawlerSettings
from jobs.context import JobContext, JobFunc, JobStats
from jobs.crawl import crawl_availability_and_prices, crawl_offpeak, run_full_crawl
from jobs.maintenance import cleanup_retention, daily_report
from pipelines.model import JobRun, JobStatus
from resilience.alerts import AlertEmitter, AlertNotifier
from resilience.circuit import CircuitBreakerRegistry
from resilience.errors import ClassifiedError, RetryExhaustedError, classify_error
from resilience.retry import RetryConfig, RetryContext, RetryExecutor
from storage.recorder import Recorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDefinition:
    name: str
    func: JobFunc
    description: str
    schedule: str | None = None


class UnknownJobError(KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown job: {self.name}"


class JobSkippedError(Exception):
    """Raised to manual callers when a job could not be admitted."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Job {name} skipped: {reason}")
        self.name = name
        self.reason = reason


class Orchestrator:
    def __init__(
        self,
        settings: CrawlerSettings,
        *,
        recorder: Recorder,
        notifier: AlertNotifier | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        executor: RetryExecutor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.settings = settings
        self.recorder = recorder
        self.emitter = AlertEmitter(recorder, notifier)
        self.breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=settings.circuit_breaker_threshold,
            recovery_seconds=settings.circuit_breaker_recovery_seconds,
            emitter=self.emitter,
        )
        self.executor = executor or RetryExecutor(
            config=RetryConfig(max_attempts=3),
            emitter=self.emitter,
            breakers=self.breakers,
            sleep=sleep,
        )
        self.max_concurrent = settings.max_concurrent_jobs
        self.failure_threshold = settings.job_failure_threshold
        self.transport = transport
        self.sleep = sleep
        self.now = now
        self._jobs: dict[str, JobDefinition] = {}
        self._running: set[str] = set()
        self._failures: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, definition: JobDefinition) -> None:
        self._jobs[definition.name] = definition

    @property
    def jobs(self) -> dict[str, JobDefinition]:
        return dict(self._jobs)

    def get(self, name: str) -> JobDefinition:
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(name) from None

    @property
    def running(self) -> frozenset[str]:
        return frozenset(self._running)

    def consecutive_failures(self, name: str) -> int:
        return self._failures.get(name, 0)

    def status(self) -> dict[str, Any]:
        return {
            "running_jobs": sorted(self._running),
            "max_concurrent_jobs": self.max_concurrent,
            "consecutive_failures": dict(self._failures),
            "open_circuits": self.breakers.open_circuits(),
            "circuits": self.breakers.snapshot(),
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _admission_error(self, name: str) -> str | None:
        if name in self._running:
            return "already running"
        if len(self._running) >= self.max_concurrent:
            return f"concurrency ceiling reached ({', '.join(sorted(self._running))} running)"
        if not self.breakers.allow_request(name):
            return "circuit breaker open"
        return None

    async def run_job(self, name: str, *, trigger: str = "schedule") -> JobRun | None:
        """Run one job unless it has to be skipped. Returns its terminal JobRun."""

        definition = self.get(name)
        reason = self._admission_error(name)
        if reason is not None:
            logger.warning("Skipping %s job (%s): %s", trigger, name, reason)
            return None

        self._running.add(name)
        try:
            return await self._execute(definition, trigger)
        finally:
            self._running.discard(name)

    async def trigger(self, name: str) -> JobRun:
        """Manual path: same as a timer tick, but a skip is reported to the caller."""

        self.get(name)
        reason = self._admission_error(name)
        if reason is not None:
            raise JobSkippedError(name, reason)
        run = await self.run_job(name, trigger="manual")
        if run is None:
            raise JobSkippedError(name, "admission changed before start")
        return run

    async def _execute(self, definition: JobDefinition, trigger: str) -> JobRun:
        run = JobRun(job_name=definition.name, trigger=trigger, started_at=self.now())
        self.recorder.record_run(run)
        logger.info("Job %s started (%s, run %s)", definition.name, trigger, run.id)

        ctx = JobContext(
            job_name=definition.name,
            trigger=trigger,
            settings=self.settings,
            executor=self.executor,
            breakers=self.breakers,
            emitter=self.emitter,
            transport=self.transport,
            sleep=self.sleep,
            now=self.now,
        )
        try:
            stats = await definition.func(ctx)
        except Exception as exc:
            finished = self._on_failure(run, exc)
        else:
            finished = self._on_success(run, stats)
        self.recorder.record_run(finished)
        return finished

    def _on_success(self, run: JobRun, stats: JobStats) -> JobRun:
        self._failures.pop(run.job_name, None)
        finished = run.finish(
            JobStatus.COMPLETED,
            processed=stats.processed,
            succeeded=stats.succeeded,
            failed=stats.failed,
            details=stats.details,
            finished_at=self.now(),
        )
        logger.info(
            "Job %s completed in %.2fs (processed=%s succeeded=%s failed=%s)",
            run.job_name,
            finished.duration_seconds,
            finished.processed,
            finished.succeeded,
            finished.failed,
        )
        return finished

    def _on_failure(self, run: JobRun, exc: Exception) -> JobRun:
        error = classify_error(exc)
        failures = self._failures.get(run.job_name, 0) + 1
        self._failures[run.job_name] = failures
        logger.error(
            "Job %s failed (%s consecutive): %s", run.job_name, failures, exc, exc_info=exc
        )

        # Client failures were already recorded attempt by attempt
        if not isinstance(exc, (ClassifiedError, RetryExhaustedError)):
            try:
                self.emitter.record_error(
                    error, RetryContext(operation=f"job:{run.job_name}", job_name=run.job_name)
                )
            except Exception:
                logger.exception("Could not record error for job %s (run %s)", run.job_name, run.id)
        if failures == self.failure_threshold:
            try:
                self.emitter.job_failing(run.job_name, failures, self.failure_threshold, str(exc))
            except Exception:
                logger.exception("Could not emit failure alert for job %s", run.job_name)

        return run.finish(
            JobStatus.FAILED,
            error_message=str(exc) or error.message,
            details={"error_category": error.category.value},
            finished_at=self.now(),
        )


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


def default_jobs(settings: CrawlerSettings) -> list[JobDefinition]:
    schedules = settings.schedules
    return [
        JobDefinition(
            name="availability",
            func=crawl_availability_and_prices,
            description="Availability and price crawl of the priority batch",
            schedule=schedules.availability,
        ),
        JobDefinition(
            name="offpeak",
            func=crawl_offpeak,
            description="Night-time availability crawl with a widened request delay",
            schedule=schedules.offpeak,
        ),
        JobDefinition(
            name="full",
            func=run_full_crawl,
            description="Hotel discovery followed by an availability crawl",
            schedule=schedules.full,
        ),
        JobDefinition(
            name="analysis",
            func=analyze_recent_changes,
            description="Price change detection over the last 24 hours",
            schedule=schedules.analysis,
        ),
        JobDefinition(
            name="cleanup",
            func=cleanup_retention,
            description="Delete logs, usage and observations past their retention",
            schedule=schedules.cleanup,
        ),
        JobDefinition(
            name="report",
            func=daily_report,
            description="Daily usage and job execution report",
            schedule=schedules.report,
        ),
    ]


def build_orchestrator(
    settings: CrawlerSettings,
    *,
    recorder: Recorder,
    notifier: AlertNotifier | None = None,
    **kwargs: Any,
) -> Orchestrator:
    orchestrator = Orchestrator(settings, recorder=recorder, notifier=notifier, **kwargs)
    for definition in default_jobs(settings):
        orchestrator.register(definition)
    return orchestrator


def build_scheduler(orchestrator: Orchestrator) -> AsyncIOScheduler:
    """APScheduler instance with one cron trigger per scheduled job.

    APScheduler may overlap ticks; admission is left to the orchestrator.
    """

    timezone = orchestrator.settings.timezone
    scheduler = AsyncIOScheduler(timezone=timezone)
    for definition in orchestrator.jobs.values():
        if not definition.schedule:
            continue
        scheduler.add_job(
            orchestrator.run_job,
            CronTrigger.from_crontab(definition.schedule, timezone=timezone),
            args=[definition.name],
            kwargs={"trigger": "schedule"},
            id=definition.name,
            name=definition.description,
            replace_existing=True,
            coalesce=True,
            max_instances=len(orchestrator.jobs),
        )
        logger.info("Scheduled %s with cron '%s' (%s)", definition.name, definition.schedule, timezone)
    return scheduler


__all__ = [
    "JobDefinition",
    "JobSkippedError",
    "Orchestrator",
    "UnknownJobError",
    "build_orchestrator",
    "build_scheduler",
    "default_jobs",
]
