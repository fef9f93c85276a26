"""FastAPI admin surface: health, manual job trigger, usage readout and exports."""

from __future__ import annotations

import os
import tempfile
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import duckdb
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from analysis.forecast import build_forecast
from jobs.config import CrawlerSettings
from jobs.scheduler import (
    JobSkippedError,
    Orchestrator,
    UnknownJobError,
    build_orchestrator,
    build_scheduler,
)
from pipelines.model import JobStatus
from storage import db
from storage.exports import alerts_query, export, observations_query
from storage.recorder import DuckDBRecorder

DEFAULT_LIMIT = 200
MAX_LIMIT = 2000
ALLOWED_FORMATS = {"json", "csv", "parquet"}
FORECAST_HISTORY_DAYS = 30
load_dotenv()


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        settings = CrawlerSettings.from_env()
        orchestrator = build_orchestrator(settings, recorder=DuckDBRecorder(settings.db_path))
        request.app.state.orchestrator = orchestrator
    return orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "orchestrator", None) is None:
        settings = CrawlerSettings.from_env()
        app.state.orchestrator = build_orchestrator(
            settings, recorder=DuckDBRecorder(settings.db_path)
        )
    orchestrator: Orchestrator = app.state.orchestrator
    conn = db.connect(orchestrator.settings.db_path)
    conn.close()

    scheduler = None
    if orchestrator.settings.scheduler_enabled:
        scheduler = build_scheduler(orchestrator)
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Hotel Inventory Watch API", version="0.1.0", lifespan=lifespan)


def _configure_cors() -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )


_configure_cors()


def _connect(orchestrator: Orchestrator) -> duckdb.DuckDBPyConnection:
    return db.connect(orchestrator.settings.db_path)


@app.get("/health")
def health(request: Request):
    orchestrator = get_orchestrator(request)
    conn = _connect(orchestrator)
    try:
        errors = db.error_statistics(conn)
    finally:
        conn.close()

    state = orchestrator.status()
    degraded = bool(state["open_circuits"]) or any(
        count >= orchestrator.failure_threshold
        for count in state["consecutive_failures"].values()
    )
    return {
        "status": "degraded" if degraded else "ok",
        "scheduler": state,
        "errors": errors,
    }


@app.get("/jobs")
def list_jobs(request: Request):
    orchestrator = get_orchestrator(request)
    running = orchestrator.running
    return {
        "jobs": [
            {
                "name": definition.name,
                "description": definition.description,
                "schedule": definition.schedule,
                "running": definition.name in running,
                "consecutive_failures": orchestrator.consecutive_failures(definition.name),
                "circuit": orchestrator.breakers.state(definition.name).state.value,
            }
            for definition in orchestrator.jobs.values()
        ]
    }


@app.post("/jobs/{name}/run")
async def run_job(name: str, request: Request):
    orchestrator = get_orchestrator(request)
    try:
        run = await orchestrator.trigger(name)
    except UnknownJobError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobSkippedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    payload = run.model_dump(mode="json")
    if run.status is JobStatus.FAILED:
        return JSONResponse(
            status_code=500, content={"detail": run.error_message, "run": payload}
        )
    return payload


@app.get("/usage")
def get_usage(
    request: Request,
    on_date: date | None = Query(None, alias="date", description="Day to report (YYYY-MM-DD)"),
    api_source: str | None = Query(None, description="Upstream API source"),
):
    orchestrator = get_orchestrator(request)
    conn = _connect(orchestrator)
    try:
        rows = db.fetch_api_usage(conn, api_source=api_source, on_date=on_date)
    finally:
        conn.close()
    return {
        "count": len(rows),
        "items": [
            {**row.model_dump(mode="json"), "success_rate": row.success_rate} for row in rows
        ],
    }


def _file_response(
    conn: duckdb.DuckDBPyConnection,
    query: str,
    fmt: str,
    stem: str,
    background_tasks: BackgroundTasks,
) -> FileResponse:
    suffix = ".csv" if fmt == "csv" else ".parquet"
    media_type = "text/csv" if fmt == "csv" else "application/vnd.apache.parquet"
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        dest = Path(tmp.name)
    export(conn, dest, fmt, query=query)

    def _cleanup(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    background_tasks.add_task(_cleanup, dest)
    return FileResponse(
        dest, media_type=media_type, filename=f"{stem}{suffix}", background=background_tasks
    )


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in ALLOWED_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format '{fmt}'.")
    return fmt


@app.get("/alerts")
def get_alerts(
    request: Request,
    background_tasks: BackgroundTasks,
    format: str = Query("json", description="Response format: json, csv, or parquet"),
    since_hours: int = Query(24, ge=1, le=24 * 90, description="Look-back window in hours"),
    category: str | None = Query(None, description="Alert category filter"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records returned"),
):
    fmt = _check_format(format)
    since = datetime.now(UTC) - timedelta(hours=since_hours)
    conn = _connect(get_orchestrator(request))
    try:
        if fmt == "json":
            alerts = db.fetch_alerts(conn, since=since, category=category, limit=limit)
            return {"count": len(alerts), "items": [a.model_dump(mode="json") for a in alerts]}
        return _file_response(
            conn, alerts_query(since=since) + f" LIMIT {limit}", fmt, "alerts", background_tasks
        )
    except duckdb.Error as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()


@app.get("/observations")
def get_observations(
    request: Request,
    background_tasks: BackgroundTasks,
    format: str = Query("json", description="Response format: json, csv, or parquet"),
    entity_id: str | None = Query(None, description="Tracked entity external id"),
    since_hours: int = Query(24, ge=1, le=24 * 90, description="Look-back window in hours"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records returned"),
):
    fmt = _check_format(format)
    since = datetime.now(UTC) - timedelta(hours=since_hours)
    conn = _connect(get_orchestrator(request))
    try:
        if fmt == "json":
            observations = db.fetch_observations_since(
                conn, since, entity_id=entity_id, limit=limit
            )
            return {
                "count": len(observations),
                "items": [
                    obs.model_dump(mode="json", exclude={"raw_payload"}) for obs in observations
                ],
            }
        if entity_id:
            raise HTTPException(
                status_code=400, detail="entity_id filtering is only supported for json"
            )
        return _file_response(
            conn,
            observations_query(since=since) + f" LIMIT {limit}",
            fmt,
            "observations",
            background_tasks,
        )
    except duckdb.Error as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()


@app.get("/entities/{entity_id}/forecast")
def get_forecast(
    entity_id: str,
    request: Request,
    room_category: str = Query(..., description="Room category to forecast"),
    check_in: date | None = Query(None, description="First target date (defaults to today)"),
    days: int = Query(7, ge=1, le=30, description="Number of days to forecast"),
):
    target = check_in or date.today()
    # History of the one-night stay key the forecast starts from
    key = (entity_id, target, target + timedelta(days=1), room_category)
    now = datetime.now(UTC)
    conn = _connect(get_orchestrator(request))
    try:
        history = db.fetch_observation_history(
            conn, key, now - timedelta(days=FORECAST_HISTORY_DAYS), now
        )
    finally:
        conn.close()
    forecast = build_forecast(
        entity_id,
        target,
        [obs.price for obs in history],
        room_category=room_category,
        days=days,
    )
    return forecast.model_dump(mode="json")
