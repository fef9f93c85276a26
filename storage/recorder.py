"""Sinks for write-once operational records (errors, alerts, job runs)."""

from __future__ import annotations

import logging
import os
from typing import Protocol

from pipelines.model import AlertRecord, ErrorRecord, JobRun, JobStatus
from storage import db

logger = logging.getLogger(__name__)


class Recorder(Protocol):
    def record_error(self, error: ErrorRecord) -> None: ...

    def record_alert(self, alert: AlertRecord) -> None: ...

    def record_run(self, run: JobRun) -> None: ...


class MemoryRecorder:
    """Keeps records in lists. Used by tests and dry runs."""

    def __init__(self) -> None:
        self.errors: list[ErrorRecord] = []
        self.alerts: list[AlertRecord] = []
        self.runs: dict[str, JobRun] = {}

    def record_error(self, error: ErrorRecord) -> None:
        self.errors.append(error)

    def record_alert(self, alert: AlertRecord) -> None:
        self.alerts.append(alert)

    def record_run(self, run: JobRun) -> None:
        self.runs[run.id] = run

    def runs_for(self, job_name: str) -> list[JobRun]:
        return [run for run in self.runs.values() if run.job_name == job_name]


class DuckDBRecorder:
    """Writes each record through a short-lived DuckDB connection.

    A job run is inserted when first seen and its terminal state is written
    over the running row afterwards.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = path
        self._seen_runs: set[str] = set()

    def record_error(self, error: ErrorRecord) -> None:
        conn = db.connect(self.path)
        try:
            db.insert_errors(conn, [error])
        finally:
            conn.close()

    def record_alert(self, alert: AlertRecord) -> None:
        conn = db.connect(self.path)
        try:
            db.insert_alerts(conn, [alert])
        finally:
            conn.close()

    def record_run(self, run: JobRun) -> None:
        conn = db.connect(self.path)
        try:
            if run.id in self._seen_runs:
                db.update_job_run(conn, run)
            else:
                db.insert_job_run(conn, run)
            if run.status is JobStatus.RUNNING:
                self._seen_runs.add(run.id)
            else:
                self._seen_runs.discard(run.id)
        finally:
            conn.close()
        logger.debug("Recorded job run %s (%s) as %s", run.id, run.job_name, run.status.value)


__all__ = ["DuckDBRecorder", "MemoryRecorder", "Recorder"]
