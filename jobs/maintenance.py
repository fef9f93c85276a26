"""Retention cleanup and daily report jobs."""

from __future__ import annotations

import logging
import statistics
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import duckdb

from jobs.config import CrawlerSettings
from jobs.context import JobContext, JobStats
from pipelines.model import JobStatus
from storage import db

logger = logging.getLogger(__name__)


def retention_plan(settings: CrawlerSettings) -> dict[str, int]:
    """Days to keep, per table."""

    return {
        db.ERRORS_TABLE: settings.log_retention_days,
        db.JOB_RUNS_TABLE: settings.log_retention_days,
        db.API_USAGE_TABLE: settings.usage_retention_days,
        db.OBSERVATIONS_TABLE: settings.observation_retention_days,
        db.PRICE_CHANGES_TABLE: settings.observation_retention_days,
        db.ALERTS_TABLE: settings.observation_retention_days,
    }


async def cleanup_retention(ctx: JobContext) -> JobStats:
    now = ctx.now()
    deleted: dict[str, int] = {}
    conn = ctx.connect()
    try:
        for table, days in retention_plan(ctx.settings).items():
            deleted[table] = db.delete_older_than(conn, table, now - timedelta(days=days))
            if deleted[table]:
                logger.info("Deleted %s rows older than %s days from %s", deleted[table], days, table)
    finally:
        conn.close()

    total = sum(deleted.values())
    logger.info("Retention cleanup removed %s rows", total)
    return JobStats(
        processed=len(deleted),
        succeeded=len(deleted),
        details={"deleted": deleted, "total_deleted": total},
    )


def build_daily_report(conn: duckdb.DuckDBPyConnection, report_date: date) -> dict[str, Any]:
    start = datetime.combine(report_date, time.min, tzinfo=UTC)
    end = start + timedelta(days=1)
    usage = db.fetch_api_usage(conn, on_date=report_date)
    runs = db.fetch_job_runs(conn, since=start, until=end)

    latencies = [row.avg_response_time_ms for row in usage if row.total_calls]
    total_calls = sum(row.total_calls for row in usage)
    successful_calls = sum(row.successful_calls for row in usage)
    return {
        "date": report_date.isoformat(),
        "api_usage": {
            "total_calls": total_calls,
            "successful_calls": successful_calls,
            "failed_calls": sum(row.failed_calls for row in usage),
            "success_rate": successful_calls / total_calls * 100 if total_calls else 0.0,
            "avg_response_time_ms": statistics.fmean(latencies) if latencies else 0.0,
        },
        "jobs": {
            "executions": len(runs),
            "completed": sum(1 for run in runs if run.status is JobStatus.COMPLETED),
            "failed": sum(1 for run in runs if run.status is JobStatus.FAILED),
            "items_processed": sum(run.processed for run in runs),
        },
    }


async def daily_report(ctx: JobContext) -> JobStats:
    """Summarize the previous day's API usage and job executions."""

    report_date = (ctx.now() - timedelta(days=1)).date()
    conn = ctx.connect()
    try:
        payload = build_daily_report(conn, report_date)
        db.save_daily_report(conn, report_date, payload, generated_at=ctx.now())
    finally:
        conn.close()

    logger.info(
        "Daily report %s: %s API calls, %s job runs (%s failed)",
        payload["date"],
        payload["api_usage"]["total_calls"],
        payload["jobs"]["executions"],
        payload["jobs"]["failed"],
    )
    return JobStats(processed=1, succeeded=1, details=payload)


__all__ = ["build_daily_report", "cleanup_retention", "daily_report", "retention_plan"]
