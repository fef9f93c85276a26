from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from pipelines.model import ApiUsage, JobRun, JobStatus


def test_job_run_rejects_more_failures_than_processed_items():
    with pytest.raises(ValueError):
        JobRun(job_name="availability", processed=2, failed=3)


def test_finish_fills_terminal_fields():
    run = JobRun(job_name="availability", trigger="manual", started_at=FIXED_NOW)

    finished = run.finish(
        JobStatus.COMPLETED,
        processed=4,
        succeeded=3,
        failed=1,
        finished_at=FIXED_NOW + timedelta(minutes=2),
    )

    assert finished.id == run.id
    assert finished.duration_seconds == 120.0
    assert finished.failed <= finished.processed
    assert run.status is JobStatus.RUNNING


def test_finished_run_cannot_finish_again():
    run = JobRun(job_name="cleanup", started_at=FIXED_NOW).finish(
        JobStatus.FAILED, error_message="boom", finished_at=FIXED_NOW
    )

    with pytest.raises(ValueError):
        run.finish(JobStatus.COMPLETED)


def test_success_rate_of_empty_bucket_is_zero():
    usage = ApiUsage(api_source="rakuten", date=FIXED_NOW.date(), hour=9)

    assert usage.success_rate == 0.0
