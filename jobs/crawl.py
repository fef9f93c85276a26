"""Crawl jobs: entity discovery and availability/price collection."""

from __future__ import annotations

import logging

import duckdb

from jobs.context import JobContext, JobStats
from pipelines.client import RateLimitedClient
from pipelines.sources.inventory import fetch_availability, fetch_entities, generate_stay_windows
from resilience.errors import ClassifiedError, RetryExhaustedError
from storage import db

logger = logging.getLogger(__name__)

# Failures of a single city or entity; anything else aborts the job
ITEM_ERRORS = (ClassifiedError, RetryExhaustedError)


def _persist_usage(conn: duckdb.DuckDBPyConnection, client: RateLimitedClient) -> None:
    rows = client.usage.drain()
    if rows:
        db.upsert_api_usage(conn, rows)


async def crawl_entities(ctx: JobContext) -> JobStats:
    """Discover luxury hotels around every configured city and upsert them."""

    stats = JobStats()
    upserted = 0
    conn = ctx.connect()
    client = ctx.client()
    try:
        async with client:
            for city in ctx.settings.cities:
                ctx.ensure_circuit_closed()
                stats.processed += 1
                try:
                    entities = await fetch_entities(
                        client,
                        city_name=city.name,
                        latitude=city.latitude,
                        longitude=city.longitude,
                    )
                except ITEM_ERRORS as exc:
                    logger.error("Hotel search failed for %s: %s", city.name, exc)
                    stats.failed += 1
                    continue
                upserted += db.upsert_entities(conn, entities)
                stats.succeeded += 1
    finally:
        _persist_usage(conn, client)
        conn.close()

    stats.details = {"entities_upserted": upserted}
    logger.info(
        "Entity crawl finished: %s/%s cities, %s hotels upserted",
        stats.succeeded,
        stats.processed,
        upserted,
    )
    return stats


async def crawl_availability_and_prices(
    ctx: JobContext, *, rate_limit_delay: float | None = None
) -> JobStats:
    """Collect observations for the next ``search_days`` stays of a priority batch."""

    settings = ctx.settings
    stats = JobStats()
    collected = 0
    conn = ctx.connect()
    client = ctx.client(rate_limit_delay=rate_limit_delay)
    try:
        entities = [
            entity
            for entity in db.list_active_entities(conn, limit=settings.batch_size)
            if entity.api_source == settings.api_source
        ]
        windows = generate_stay_windows(settings.search_days, today=ctx.now().date())
        logger.info(
            "Crawling availability for %s hotels across %s stay windows",
            len(entities),
            len(windows),
        )

        async with client:
            for entity in entities:
                ctx.ensure_circuit_closed()
                stats.processed += 1
                try:
                    for window in windows:
                        observations = await fetch_availability(
                            client,
                            entity,
                            window,
                            last_minute_horizon=settings.last_minute_horizon_days,
                        )
                        collected += db.insert_observations(conn, observations)
                except ITEM_ERRORS as exc:
                    logger.error("Availability crawl failed for %s: %s", entity.name, exc)
                    stats.failed += 1
                    continue
                db.mark_entity_crawled(conn, entity.external_id, ctx.now())
                stats.succeeded += 1
    finally:
        _persist_usage(conn, client)
        conn.close()

    stats.details = {"observations": collected}
    logger.info(
        "Availability crawl finished: %s succeeded, %s failed, %s observations",
        stats.succeeded,
        stats.failed,
        collected,
    )
    return stats


async def crawl_offpeak(ctx: JobContext) -> JobStats:
    return await crawl_availability_and_prices(
        ctx, rate_limit_delay=ctx.settings.offpeak_rate_limit_delay
    )


async def run_full_crawl(ctx: JobContext) -> JobStats:
    """Entity metadata first, then prices for the refreshed batch."""

    entity_stats = await crawl_entities(ctx)
    price_stats = await crawl_availability_and_prices(ctx)
    combined = entity_stats.merge(price_stats)
    combined.details = {
        "entities": {
            "processed": entity_stats.processed,
            "succeeded": entity_stats.succeeded,
            "failed": entity_stats.failed,
            **entity_stats.details,
        },
        "availability": {
            "processed": price_stats.processed,
            "succeeded": price_stats.succeeded,
            "failed": price_stats.failed,
            **price_stats.details,
        },
    }
    return combined


__all__ = [
    "crawl_availability_and_prices",
    "crawl_entities",
    "crawl_offpeak",
    "run_full_crawl",
]
