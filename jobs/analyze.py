"""Price analysis job over recently collected observations."""

from __future__ import annotations

import logging
from datetime import timedelta

from analysis.changes import PriceChangeAnalyzer
from jobs.context import JobContext, JobStats
from storage import db

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW_HOURS = 24


async def analyze_recent_changes(
    ctx: JobContext, *, window_hours: int = ANALYSIS_WINDOW_HOURS
) -> JobStats:
    """Detect price changes in the last ``window_hours`` and emit price alerts.

    Pairs of observations that already produced an event in an earlier run
    are not reported again.
    """

    since = ctx.now() - timedelta(hours=window_hours)
    conn = ctx.connect()
    try:
        observations = db.fetch_observations_since(conn, since)
        names = {entity.external_id: entity.name for entity in db.list_active_entities(conn)}
        analyzer = PriceChangeAnalyzer(db.history_provider(conn))
        result = analyzer.analyze(observations, entity_names=names)

        known = db.fetch_change_pairs(conn, since)
        events = [
            event
            for event in result.events
            if (event.earlier_observation_id, event.later_observation_id) not in known
        ]
        fresh_ids = {event.id for event in events}
        alerts = [alert for alert in result.alerts if alert.context.get("event_id") in fresh_ids]

        db.insert_price_change_events(conn, events)
    finally:
        conn.close()

    for alert in alerts:
        ctx.emitter.emit(alert)

    escalated = sum(1 for event in events if event.significance.escalates)
    logger.info(
        "Price analysis: %s observations, %s new changes (%s significant), %s alerts",
        len(observations),
        len(events),
        escalated,
        len(alerts),
    )
    return JobStats(
        processed=len(observations),
        succeeded=len(observations),
        details={
            "changes": len(events),
            "significant_changes": escalated,
            "alerts": len(alerts),
            "skipped_known": len(result.events) - len(events),
        },
    )


__all__ = ["ANALYSIS_WINDOW_HOURS", "analyze_recent_changes"]
