"""DuckDB persistence for tracked inventory, observations and operational logs."""

from __future__ import annotations

import json
import os
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import duckdb

from analysis.model import PriceChangeEvent
from pipelines.model import (
    AlertRecord,
    ApiUsage,
    ErrorRecord,
    JobRun,
    Observation,
    TrackedEntity,
)

DB_ENV_VAR = "INVENTORY_DB_PATH"
DEFAULT_DB_PATH = Path("data/inventory.duckdb")

ENTITIES_TABLE = "tracked_entities"
OBSERVATIONS_TABLE = "observations"
PRICE_CHANGES_TABLE = "price_change_events"
ALERTS_TABLE = "alert_records"
ERRORS_TABLE = "error_records"
JOB_RUNS_TABLE = "job_runs"
API_USAGE_TABLE = "api_usage"
DAILY_REPORTS_TABLE = "daily_reports"

# Timestamp column used for age-based retention, per table
RETENTION_COLUMNS: dict[str, str] = {
    OBSERVATIONS_TABLE: "observed_at",
    PRICE_CHANGES_TABLE: "detected_at",
    ALERTS_TABLE: "created_at",
    ERRORS_TABLE: "occurred_at",
    JOB_RUNS_TABLE: "started_at",
    API_USAGE_TABLE: '"date"',
}
_DATE_RETENTION = {API_USAGE_TABLE}

_SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS {ENTITIES_TABLE} (
        external_id TEXT PRIMARY KEY,
        api_source TEXT NOT NULL,
        api_hotel_id TEXT NOT NULL,
        name TEXT NOT NULL,
        city TEXT,
        address TEXT,
        latitude DOUBLE NOT NULL,
        longitude DOUBLE NOT NULL,
        hotel_class INTEGER NOT NULL,
        priority INTEGER NOT NULL,
        is_active BOOLEAN NOT NULL,
        last_crawled_at TIMESTAMP
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {OBSERVATIONS_TABLE} (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL,
        check_in DATE NOT NULL,
        check_out DATE NOT NULL,
        room_category TEXT NOT NULL,
        room_name TEXT,
        price DOUBLE NOT NULL,
        available_units INTEGER NOT NULL,
        is_last_minute BOOLEAN NOT NULL,
        days_before_checkin INTEGER NOT NULL,
        day_of_week INTEGER NOT NULL,
        season TEXT NOT NULL,
        is_weekend BOOLEAN NOT NULL,
        api_source TEXT NOT NULL,
        observed_at TIMESTAMP NOT NULL,
        raw_payload JSON
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_{OBSERVATIONS_TABLE}_key
    ON {OBSERVATIONS_TABLE} (entity_id, check_in, check_out, room_category)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {PRICE_CHANGES_TABLE} (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL,
        check_in DATE NOT NULL,
        check_out DATE NOT NULL,
        room_category TEXT NOT NULL,
        earlier_observation_id TEXT NOT NULL,
        later_observation_id TEXT NOT NULL,
        earlier_observed_at TIMESTAMP NOT NULL,
        later_observed_at TIMESTAMP NOT NULL,
        previous_price DOUBLE NOT NULL,
        current_price DOUBLE NOT NULL,
        delta DOUBLE NOT NULL,
        delta_pct DOUBLE NOT NULL,
        significance TEXT NOT NULL,
        days_before_checkin INTEGER,
        is_weekend BOOLEAN,
        season TEXT,
        statistics JSON,
        trend JSON,
        detected_at TIMESTAMP NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ALERTS_TABLE} (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        priority TEXT,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        job_name TEXT,
        entity_id TEXT,
        created_at TIMESTAMP NOT NULL,
        context JSON
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ERRORS_TABLE} (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        severity TEXT NOT NULL,
        message TEXT NOT NULL,
        operation TEXT NOT NULL,
        job_name TEXT,
        entity_id TEXT,
        api_source TEXT,
        http_status INTEGER,
        attempt INTEGER NOT NULL,
        max_attempts INTEGER NOT NULL,
        occurred_at TIMESTAMP NOT NULL,
        context JSON
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOB_RUNS_TABLE} (
        id TEXT PRIMARY KEY,
        job_name TEXT NOT NULL,
        status TEXT NOT NULL,
        "trigger" TEXT NOT NULL,
        started_at TIMESTAMP NOT NULL,
        finished_at TIMESTAMP,
        processed INTEGER NOT NULL,
        succeeded INTEGER NOT NULL,
        failed INTEGER NOT NULL,
        duration_seconds DOUBLE,
        error_message TEXT,
        details JSON
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {API_USAGE_TABLE} (
        api_source TEXT NOT NULL,
        "date" DATE NOT NULL,
        "hour" INTEGER NOT NULL,
        total_calls INTEGER NOT NULL,
        successful_calls INTEGER NOT NULL,
        failed_calls INTEGER NOT NULL,
        avg_response_time_ms DOUBLE NOT NULL,
        PRIMARY KEY (api_source, "date", "hour")
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DAILY_REPORTS_TABLE} (
        report_date DATE PRIMARY KEY,
        generated_at TIMESTAMP NOT NULL,
        payload JSON NOT NULL
    )
    """,
)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def get_database_path(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the DuckDB file path from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def connect(
    path: str | os.PathLike[str] | None = None,
    *,
    read_only: bool = False,
    ensure: bool = True,
) -> duckdb.DuckDBPyConnection:
    db_path = get_database_path(path)
    if not read_only:
        _ensure_parent_dir(db_path)
    conn = duckdb.connect(str(db_path), read_only=read_only)
    if ensure and not read_only:
        ensure_schema(conn)
    return conn


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    for statement in _SCHEMA:
        conn.execute(statement)


# DuckDB TIMESTAMP columns hold naive UTC values
def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _dump(value: Any) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _load(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _rows(cursor: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _select(
    conn: duckdb.DuckDBPyConnection,
    table: str,
    *,
    where: Sequence[str] = (),
    params: Sequence[Any] = (),
    order_by: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    sql = f"SELECT * FROM {table}"
    if where:
        sql += " WHERE " + " AND ".join(where)
    if order_by:
        sql += f" ORDER BY {order_by}"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return _rows(conn.execute(sql, list(params)))


# ---------------------------------------------------------------------------
# Tracked entities
# ---------------------------------------------------------------------------


def upsert_entities(conn: duckdb.DuckDBPyConnection, entities: Iterable[TrackedEntity]) -> int:
    """Insert new entities or refresh metadata of known ones.

    Priority of an existing entity is kept; a re-discovered entity is reactivated.
    """

    written = 0
    for entity in entities:
        conn.execute(
            f"""
            INSERT INTO {ENTITIES_TABLE} (
                external_id, api_source, api_hotel_id, name, city, address,
                latitude, longitude, hotel_class, priority, is_active, last_crawled_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (external_id) DO UPDATE SET
                name = EXCLUDED.name,
                city = EXCLUDED.city,
                address = EXCLUDED.address,
                latitude = EXCLUDED.latitude,
                longitude = EXCLUDED.longitude,
                hotel_class = EXCLUDED.hotel_class,
                is_active = EXCLUDED.is_active,
                last_crawled_at = EXCLUDED.last_crawled_at
            """,
            [
                entity.external_id,
                entity.api_source,
                entity.api_hotel_id,
                entity.name,
                entity.city,
                entity.address,
                entity.latitude,
                entity.longitude,
                entity.hotel_class,
                entity.priority,
                entity.is_active,
                _to_db(entity.last_crawled_at),
            ],
        )
        written += 1
    return written


def _entity_from_row(row: dict[str, Any]) -> TrackedEntity:
    row["last_crawled_at"] = _from_db(row["last_crawled_at"])
    return TrackedEntity.model_validate(row)


def list_active_entities(
    conn: duckdb.DuckDBPyConnection, *, limit: int | None = None, city: str | None = None
) -> list[TrackedEntity]:
    """Active entities in crawl order: priority rank first, stalest crawl next."""

    where = ["is_active"]
    params: list[Any] = []
    if city:
        where.append("city = ?")
        params.append(city)
    rows = _select(
        conn,
        ENTITIES_TABLE,
        where=where,
        params=params,
        order_by="priority ASC, last_crawled_at ASC NULLS FIRST, external_id",
        limit=limit,
    )
    return [_entity_from_row(row) for row in rows]


def get_entity(conn: duckdb.DuckDBPyConnection, external_id: str) -> TrackedEntity | None:
    rows = _select(conn, ENTITIES_TABLE, where=["external_id = ?"], params=[external_id])
    return _entity_from_row(rows[0]) if rows else None


def deactivate_entity(conn: duckdb.DuckDBPyConnection, external_id: str) -> bool:
    if get_entity(conn, external_id) is None:
        return False
    conn.execute(
        f"UPDATE {ENTITIES_TABLE} SET is_active = FALSE WHERE external_id = ?", [external_id]
    )
    return True


def mark_entity_crawled(
    conn: duckdb.DuckDBPyConnection, external_id: str, crawled_at: datetime
) -> None:
    conn.execute(
        f"UPDATE {ENTITIES_TABLE} SET last_crawled_at = ? WHERE external_id = ?",
        [_to_db(crawled_at), external_id],
    )


# ---------------------------------------------------------------------------
# Observations and price changes
# ---------------------------------------------------------------------------


def insert_observations(
    conn: duckdb.DuckDBPyConnection, observations: Iterable[Observation]
) -> int:
    serialized = [
        (
            obs.id,
            obs.entity_id,
            obs.check_in,
            obs.check_out,
            obs.room_category,
            obs.room_name,
            obs.price,
            obs.available_units,
            obs.is_last_minute,
            obs.days_before_checkin,
            obs.day_of_week,
            obs.season,
            obs.is_weekend,
            obs.api_source,
            _to_db(obs.observed_at),
            _dump(obs.raw_payload),
        )
        for obs in observations
    ]
    if not serialized:
        return 0
    conn.executemany(
        f"""
        INSERT INTO {OBSERVATIONS_TABLE} (
            id, entity_id, check_in, check_out, room_category, room_name, price,
            available_units, is_last_minute, days_before_checkin, day_of_week, season,
            is_weekend, api_source, observed_at, raw_payload
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        serialized,
    )
    return len(serialized)


def _observation_from_row(row: dict[str, Any]) -> Observation:
    row["observed_at"] = _from_db(row["observed_at"])
    row["raw_payload"] = _load(row["raw_payload"])
    return Observation.model_validate(row)


def fetch_observations_since(
    conn: duckdb.DuckDBPyConnection,
    since: datetime,
    *,
    until: datetime | None = None,
    entity_id: str | None = None,
    limit: int | None = None,
) -> list[Observation]:
    where = ["observed_at >= ?"]
    params: list[Any] = [_to_db(since)]
    if until is not None:
        where.append("observed_at <= ?")
        params.append(_to_db(until))
    if entity_id:
        where.append("entity_id = ?")
        params.append(entity_id)
    rows = _select(
        conn,
        OBSERVATIONS_TABLE,
        where=where,
        params=params,
        order_by="observed_at ASC",
        limit=limit,
    )
    return [_observation_from_row(row) for row in rows]


def fetch_observation_history(
    conn: duckdb.DuckDBPyConnection,
    key: tuple[str, date, date, str],
    since: datetime,
    until: datetime,
) -> list[Observation]:
    """Observations for one (entity, check-in, check-out, room category) key in a window."""

    entity_id, check_in, check_out, room_category = key
    rows = _select(
        conn,
        OBSERVATIONS_TABLE,
        where=[
            "entity_id = ?",
            "check_in = ?",
            "check_out = ?",
            "room_category = ?",
            "observed_at >= ?",
            "observed_at <= ?",
        ],
        params=[entity_id, check_in, check_out, room_category, _to_db(since), _to_db(until)],
        order_by="observed_at ASC",
    )
    return [_observation_from_row(row) for row in rows]


def history_provider(
    conn: duckdb.DuckDBPyConnection,
) -> Callable[[tuple[str, date, date, str], datetime, datetime], list[Observation]]:
    def provide(key: tuple[str, date, date, str], since: datetime, until: datetime):
        return fetch_observation_history(conn, key, since, until)

    return provide


def insert_price_change_events(
    conn: duckdb.DuckDBPyConnection, events: Iterable[PriceChangeEvent]
) -> int:
    serialized = [
        (
            event.id,
            event.entity_id,
            event.check_in,
            event.check_out,
            event.room_category,
            event.earlier_observation_id,
            event.later_observation_id,
            _to_db(event.earlier_observed_at),
            _to_db(event.later_observed_at),
            event.previous_price,
            event.current_price,
            event.delta,
            event.delta_pct,
            event.significance.value,
            event.days_before_checkin,
            event.is_weekend,
            event.season,
            _dump(event.statistics.model_dump() if event.statistics else None),
            _dump(event.trend.model_dump(mode="json") if event.trend else None),
            _to_db(event.detected_at),
        )
        for event in events
    ]
    if not serialized:
        return 0
    conn.executemany(
        f"""
        INSERT INTO {PRICE_CHANGES_TABLE} VALUES (
            ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
        )
        """,
        serialized,
    )
    return len(serialized)


def fetch_change_pairs(
    conn: duckdb.DuckDBPyConnection, since: datetime
) -> set[tuple[str, str]]:
    """(earlier, later) observation id pairs already turned into events."""

    rows = conn.execute(
        f"SELECT earlier_observation_id, later_observation_id FROM {PRICE_CHANGES_TABLE} "
        "WHERE later_observed_at >= ?",
        [_to_db(since)],
    ).fetchall()
    return {(earlier, later) for earlier, later in rows}


def fetch_price_change_events(
    conn: duckdb.DuckDBPyConnection,
    *,
    since: datetime | None = None,
    entity_id: str | None = None,
    limit: int | None = None,
) -> list[PriceChangeEvent]:
    where: list[str] = []
    params: list[Any] = []
    if since is not None:
        where.append("detected_at >= ?")
        params.append(_to_db(since))
    if entity_id:
        where.append("entity_id = ?")
        params.append(entity_id)
    rows = _select(
        conn,
        PRICE_CHANGES_TABLE,
        where=where,
        params=params,
        order_by="detected_at DESC",
        limit=limit,
    )
    events = []
    for row in rows:
        for column in ("earlier_observed_at", "later_observed_at", "detected_at"):
            row[column] = _from_db(row[column])
        row["statistics"] = _load(row["statistics"])
        row["trend"] = _load(row["trend"])
        events.append(PriceChangeEvent.model_validate(row))
    return events


# ---------------------------------------------------------------------------
# Alerts, errors and job runs
# ---------------------------------------------------------------------------


def insert_alerts(conn: duckdb.DuckDBPyConnection, alerts: Iterable[AlertRecord]) -> int:
    serialized = [
        (
            alert.id,
            alert.category,
            alert.alert_type,
            alert.severity.value,
            alert.priority.value if alert.priority else None,
            alert.title,
            alert.message,
            alert.job_name,
            alert.entity_id,
            _to_db(alert.created_at),
            _dump(alert.context),
        )
        for alert in alerts
    ]
    if not serialized:
        return 0
    conn.executemany(
        f"INSERT INTO {ALERTS_TABLE} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        serialized,
    )
    return len(serialized)


def fetch_alerts(
    conn: duckdb.DuckDBPyConnection,
    *,
    since: datetime | None = None,
    category: str | None = None,
    limit: int | None = None,
) -> list[AlertRecord]:
    where: list[str] = []
    params: list[Any] = []
    if since is not None:
        where.append("created_at >= ?")
        params.append(_to_db(since))
    if category:
        where.append("category = ?")
        params.append(category)
    rows = _select(
        conn, ALERTS_TABLE, where=where, params=params, order_by="created_at DESC", limit=limit
    )
    alerts = []
    for row in rows:
        row["created_at"] = _from_db(row["created_at"])
        row["context"] = _load(row["context"]) or {}
        alerts.append(AlertRecord.model_validate(row))
    return alerts


def insert_errors(conn: duckdb.DuckDBPyConnection, errors: Iterable[ErrorRecord]) -> int:
    serialized = [
        (
            error.id,
            error.category.value,
            error.severity.value,
            error.message,
            error.operation,
            error.job_name,
            error.entity_id,
            error.api_source,
            error.http_status,
            error.attempt,
            error.max_attempts,
            _to_db(error.occurred_at),
            _dump(error.context),
        )
        for error in errors
    ]
    if not serialized:
        return 0
    conn.executemany(
        f"INSERT INTO {ERRORS_TABLE} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        serialized,
    )
    return len(serialized)


def insert_job_run(conn: duckdb.DuckDBPyConnection, run: JobRun) -> None:
    conn.execute(
        f"INSERT INTO {JOB_RUNS_TABLE} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            run.id,
            run.job_name,
            run.status.value,
            run.trigger,
            _to_db(run.started_at),
            _to_db(run.finished_at),
            run.processed,
            run.succeeded,
            run.failed,
            run.duration_seconds,
            run.error_message,
            _dump(run.details),
        ],
    )


def update_job_run(conn: duckdb.DuckDBPyConnection, run: JobRun) -> None:
    """Write the terminal state of a job run."""

    conn.execute(
        f"""
        UPDATE {JOB_RUNS_TABLE} SET
            status = ?, finished_at = ?, processed = ?, succeeded = ?, failed = ?,
            duration_seconds = ?, error_message = ?, details = ?
        WHERE id = ?
        """,
        [
            run.status.value,
            _to_db(run.finished_at),
            run.processed,
            run.succeeded,
            run.failed,
            run.duration_seconds,
            run.error_message,
            _dump(run.details),
            run.id,
        ],
    )


def fetch_job_runs(
    conn: duckdb.DuckDBPyConnection,
    *,
    job_name: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> list[JobRun]:
    where: list[str] = []
    params: list[Any] = []
    if job_name:
        where.append("job_name = ?")
        params.append(job_name)
    if since is not None:
        where.append("started_at >= ?")
        params.append(_to_db(since))
    if until is not None:
        where.append("started_at < ?")
        params.append(_to_db(until))
    rows = _select(
        conn, JOB_RUNS_TABLE, where=where, params=params, order_by="started_at DESC", limit=limit
    )
    runs = []
    for row in rows:
        row["started_at"] = _from_db(row["started_at"])
        row["finished_at"] = _from_db(row["finished_at"])
        row["details"] = _load(row["details"]) or {}
        runs.append(JobRun.model_validate(row))
    return runs


def error_statistics(
    conn: duckdb.DuckDBPyConnection, *, now: datetime | None = None
) -> dict[str, Any]:
    """Error counts by category and severity over the last hour, day and week."""

    current = now or datetime.now(UTC)
    windows = {
        "last_hour": timedelta(hours=1),
        "last_24h": timedelta(days=1),
        "last_7d": timedelta(days=7),
    }
    stats: dict[str, Any] = {}
    for label, span in windows.items():
        since = _to_db(current - span)
        by_category = conn.execute(
            f"SELECT category, COUNT(*) FROM {ERRORS_TABLE} "
            "WHERE occurred_at >= ? GROUP BY category ORDER BY category",
            [since],
        ).fetchall()
        by_severity = conn.execute(
            f"SELECT severity, COUNT(*) FROM {ERRORS_TABLE} "
            "WHERE occurred_at >= ? GROUP BY severity ORDER BY severity",
            [since],
        ).fetchall()
        stats[label] = {
            "total": sum(count for _, count in by_category),
            "by_category": dict(by_category),
            "by_severity": dict(by_severity),
        }
    return stats


# ---------------------------------------------------------------------------
# Usage accounting
# ---------------------------------------------------------------------------


def upsert_api_usage(conn: duckdb.DuckDBPyConnection, rows: Iterable[ApiUsage]) -> int:
    """Add usage increments onto the stored (source, date, hour) buckets."""

    written = 0
    for usage in rows:
        if not usage.total_calls:
            continue
        conn.execute(
            f"""
            INSERT INTO {API_USAGE_TABLE} VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (api_source, "date", "hour") DO UPDATE SET
                avg_response_time_ms = (
                    avg_response_time_ms * total_calls
                    + EXCLUDED.avg_response_time_ms * EXCLUDED.total_calls
                ) / (total_calls + EXCLUDED.total_calls),
                total_calls = total_calls + EXCLUDED.total_calls,
                successful_calls = successful_calls + EXCLUDED.successful_calls,
                failed_calls = failed_calls + EXCLUDED.failed_calls
            """,
            [
                usage.api_source,
                usage.date,
                usage.hour,
                usage.total_calls,
                usage.successful_calls,
                usage.failed_calls,
                usage.avg_response_time_ms,
            ],
        )
        written += 1
    return written


def fetch_api_usage(
    conn: duckdb.DuckDBPyConnection,
    *,
    api_source: str | None = None,
    on_date: date | None = None,
) -> list[ApiUsage]:
    where: list[str] = []
    params: list[Any] = []
    if api_source:
        where.append("api_source = ?")
        params.append(api_source)
    if on_date is not None:
        where.append('"date" = ?')
        params.append(on_date)
    rows = _select(
        conn,
        API_USAGE_TABLE,
        where=where,
        params=params,
        order_by='"date" ASC, "hour" ASC, api_source',
    )
    return [ApiUsage.model_validate(row) for row in rows]


# ---------------------------------------------------------------------------
# Retention and reports
# ---------------------------------------------------------------------------


def delete_older_than(
    conn: duckdb.DuckDBPyConnection, table: str, cutoff: datetime
) -> int:
    """Delete rows whose retention timestamp precedes ``cutoff``. Returns the row count."""

    column = RETENTION_COLUMNS[table]
    bound: Any = cutoff.date() if table in _DATE_RETENTION else _to_db(cutoff)
    (count,) = conn.execute(
        f"SELECT COUNT(*) FROM {table} WHERE {column} < ?", [bound]
    ).fetchone()
    if count:
        conn.execute(f"DELETE FROM {table} WHERE {column} < ?", [bound])
    return int(count)


def save_daily_report(
    conn: duckdb.DuckDBPyConnection,
    report_date: date,
    payload: dict[str, Any],
    *,
    generated_at: datetime | None = None,
) -> None:
    conn.execute(
        f"INSERT OR REPLACE INTO {DAILY_REPORTS_TABLE} VALUES (?, ?, ?)",
        [report_date, _to_db(generated_at or datetime.now(UTC)), _dump(payload)],
    )


def fetch_daily_report(
    conn: duckdb.DuckDBPyConnection, report_date: date
) -> dict[str, Any] | None:
    row = conn.execute(
        f"SELECT payload FROM {DAILY_REPORTS_TABLE} WHERE report_date = ?", [report_date]
    ).fetchone()
    return _load(row[0]) if row else None


__all__ = [
    "ALERTS_TABLE",
    "API_USAGE_TABLE",
    "DAILY_REPORTS_TABLE",
    "ENTITIES_TABLE",
    "ERRORS_TABLE",
    "JOB_RUNS_TABLE",
    "OBSERVATIONS_TABLE",
    "PRICE_CHANGES_TABLE",
    "RETENTION_COLUMNS",
    "connect",
    "deactivate_entity",
    "delete_older_than",
    "ensure_schema",
    "error_statistics",
    "fetch_alerts",
    "fetch_api_usage",
    "fetch_change_pairs",
    "fetch_daily_report",
    "fetch_job_runs",
    "fetch_observation_history",
    "fetch_observations_since",
    "fetch_price_change_events",
    "get_database_path",
    "get_entity",
    "history_provider",
    "insert_alerts",
    "insert_errors",
    "insert_job_run",
    "insert_observations",
    "insert_price_change_events",
    "list_active_entities",
    "mark_entity_crawled",
    "save_daily_report",
    "update_job_run",
    "upsert_api_usage",
    "upsert_entities",
]
