"""Export helpers for data persisted inside DuckDB."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import duckdb

from storage.db import ALERTS_TABLE, OBSERVATIONS_TABLE, RETENTION_COLUMNS

EXPORT_FORMATS = ("csv", "parquet")


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def table_query(table: str, *, since: datetime | None = None) -> str:
    """SELECT over ``table`` ordered by its timestamp column.

    ``since`` is rendered as a timestamp literal since COPY statements do not
    take bound parameters.
    """

    column = RETENTION_COLUMNS[table]
    sql = f"SELECT * FROM {table}"
    if since is not None:
        if since.tzinfo is not None:
            since = since.astimezone(UTC).replace(tzinfo=None)
        sql += f" WHERE {column} >= TIMESTAMP '{since.isoformat(sep=' ')}'"
    return sql + f" ORDER BY {column}"


def observations_query(*, since: datetime | None = None) -> str:
    return table_query(OBSERVATIONS_TABLE, since=since)


def alerts_query(*, since: datetime | None = None) -> str:
    return table_query(ALERTS_TABLE, since=since)


def export_to_csv(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    *,
    query: str | None = None,
    include_header: bool = True,
) -> Path:
    """Materialize query results into a CSV file using DuckDB's COPY command."""

    dest_path = Path(destination)
    _ensure_parent(dest_path)
    sql = query or observations_query()
    sanitized_path = str(dest_path).replace("'", "''")
    conn.execute(
        f"COPY ({sql}) TO '{sanitized_path}'"
        f" (FORMAT CSV, HEADER {'TRUE' if include_header else 'FALSE'})"
    )
    return dest_path


def export_to_parquet(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    *,
    query: str | None = None,
) -> Path:
    dest_path = Path(destination)
    _ensure_parent(dest_path)
    sql = query or observations_query()
    sanitized_path = str(dest_path).replace("'", "''")
    conn.execute(f"COPY ({sql}) TO '{sanitized_path}' (FORMAT PARQUET)")
    return dest_path


def export(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    fmt: str,
    *,
    query: str | None = None,
) -> Path:
    if fmt == "csv":
        return export_to_csv(conn, destination, query=query)
    if fmt == "parquet":
        return export_to_parquet(conn, destination, query=query)
    raise ValueError(f"Unsupported export format: {fmt}")


__all__ = [
    "EXPORT_FORMATS",
    "alerts_query",
    "export",
    "export_to_csv",
    "export_to_parquet",
    "observations_query",
    "table_query",
]
