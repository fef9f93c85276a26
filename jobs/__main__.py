"""Command-line entrypoint for the crawler jobs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
from datetime import date

from dotenv import load_dotenv

from jobs.config import TARGET_CITIES, CityConfig, CrawlerSettings
from jobs.scheduler import (
    JobSkippedError,
    Orchestrator,
    UnknownJobError,
    build_orchestrator,
    build_scheduler,
)
from pipelines.model import JobStatus
from storage import db
from storage.recorder import DuckDBRecorder

logger = logging.getLogger(__name__)


def _format_city(city: CityConfig) -> str:
    return (
        f"{city.key}: name='{city.name}' lat={city.latitude} lon={city.longitude} "
        f"area_code={city.area_code}"
    )


def _configure_logging(level: str | None) -> None:
    if level:
        os.environ["LOG_LEVEL"] = level
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))


def _orchestrator(settings: CrawlerSettings) -> Orchestrator:
    return build_orchestrator(settings, recorder=DuckDBRecorder(settings.db_path))


async def _serve(orchestrator: Orchestrator) -> None:
    scheduler = build_scheduler(orchestrator)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    logger.info("Scheduler running with %s jobs; waiting for SIGINT/SIGTERM", len(scheduler.get_jobs()))
    try:
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def _run(orchestrator: Orchestrator, name: str) -> int:
    try:
        run = asyncio.run(orchestrator.trigger(name))
    except UnknownJobError as exc:
        print(str(exc))
        return 2
    except JobSkippedError as exc:
        print(str(exc))
        return 3
    print(json.dumps(run.model_dump(mode="json"), indent=2))
    return 0 if run.status is JobStatus.COMPLETED else 1


def _usage(settings: CrawlerSettings, on_date: date | None) -> int:
    conn = db.connect(settings.db_path)
    try:
        rows = db.fetch_api_usage(conn, on_date=on_date)
    finally:
        conn.close()
    for row in rows:
        print(
            f"{row.api_source} {row.date.isoformat()} {row.hour:02d}h "
            f"calls={row.total_calls} ok={row.successful_calls} failed={row.failed_calls} "
            f"success_rate={row.success_rate:.1f}% avg_ms={row.avg_response_time_ms:.0f}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Hotel inventory crawler job runner")
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-jobs", help="Show registered jobs and their schedules")
    subparsers.add_parser("list-cities", help="Show configured target cities")

    run_parser = subparsers.add_parser("run", help="Run one job immediately")
    run_parser.add_argument("job", help="Job name (see list-jobs)")

    subparsers.add_parser("serve", help="Run all jobs on their cron schedules")

    usage_parser = subparsers.add_parser("usage", help="Show recorded upstream API usage")
    usage_parser.add_argument(
        "--date", type=date.fromisoformat, help="Only show usage for this day (YYYY-MM-DD)"
    )

    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    settings = CrawlerSettings.from_env()

    if args.command == "list-cities":
        for city in TARGET_CITIES:
            print(_format_city(city))
        return 0

    if args.command == "list-jobs":
        for definition in _orchestrator(settings).jobs.values():
            print(f"{definition.name}: [{definition.schedule or 'manual'}] {definition.description}")
        return 0

    if args.command == "run":
        return _run(_orchestrator(settings), args.job)

    if args.command == "serve":
        asyncio.run(_serve(_orchestrator(settings)))
        return 0

    if args.command == "usage":
        return _usage(settings, args.date)

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
