from datetime import UTC, date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from api.main import app
from conftest import make_observation
from jobs.context import JobContext, JobStats
from jobs.scheduler import JobDefinition, build_orchestrator
from pipelines.model import AlertRecord, ApiUsage
from resilience.errors import Severity
from storage import db


@pytest.fixture()
def orchestrator(settings, recorder):
    orchestrator = build_orchestrator(settings, recorder=recorder)
    app.state.orchestrator = orchestrator
    yield orchestrator
    del app.state.orchestrator


@pytest.fixture()
def client(orchestrator):
    return TestClient(app)


@pytest.fixture()
def populated_db(settings):
    conn = db.connect(settings.db_path)
    try:
        db.upsert_api_usage(
            conn,
            [
                ApiUsage(api_source="rakuten", date=date(2025, 7, 9), hour=8, total_calls=4, successful_calls=3, failed_calls=1, avg_response_time_ms=120.0),
                ApiUsage(api_source="rakuten", date=date(2025, 7, 10), hour=8, total_calls=2, successful_calls=2, avg_response_time_ms=80.0),
            ],
        )
        db.insert_alerts(
            conn,
            [
                AlertRecord(
                    category="price",
                    alert_type="last_minute_deal",
                    severity=Severity.MEDIUM,
                    title="Last-minute deal: Park Hyatt 18.0% off",
                    message="Park Hyatt price dropped.",
                    entity_id="rakuten_1001",
                )
            ],
        )
    finally:
        conn.close()


def test_health_reports_scheduler_state(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["scheduler"]["running_jobs"] == []
    assert body["errors"]["last_hour"]["total"] == 0


def test_health_is_degraded_with_open_circuit(client, orchestrator):
    for _ in range(orchestrator.settings.circuit_breaker_threshold):
        orchestrator.breakers.record_failure("availability", "upstream down")

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["scheduler"]["open_circuits"] == ["availability"]


def test_jobs_listing(client):
    response = client.get("/jobs")

    assert response.status_code == 200
    jobs = {job["name"]: job for job in response.json()["jobs"]}
    assert jobs["availability"]["schedule"] == "*/15 6-23 * * *"
    assert jobs["availability"]["circuit"] == "closed"
    assert not jobs["cleanup"]["running"]


def test_manual_run_returns_terminal_run(client):
    response = client.post("/jobs/report/run")

    assert response.status_code == 200
    body = response.json()
    assert body["job_name"] == "report"
    assert body["trigger"] == "manual"
    assert body["status"] == "completed"


def test_manual_run_of_unknown_job_is_404(client):
    response = client.post("/jobs/nightly/run")

    assert response.status_code == 404
    assert "nightly" in response.json()["detail"]


def test_manual_run_failure_is_500_with_run(client, orchestrator):
    async def broken(ctx: JobContext) -> JobStats:
        raise RuntimeError("report store unavailable")

    orchestrator.register(JobDefinition("broken", broken, "always fails"))

    response = client.post("/jobs/broken/run")

    assert response.status_code == 500
    body = response.json()
    assert body["detail"] == "report store unavailable"
    assert body["run"]["status"] == "failed"


def test_manual_run_skipped_while_breaker_open(client, orchestrator):
    for _ in range(orchestrator.settings.circuit_breaker_threshold):
        orchestrator.breakers.record_failure("full", "upstream down")

    response = client.post("/jobs/full/run")

    assert response.status_code == 409
    assert "circuit breaker open" in response.json()["detail"]


def test_usage_by_date(client, populated_db):
    response = client.get("/usage", params={"date": "2025-07-09"})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    (item,) = body["items"]
    assert item["total_calls"] == 4
    assert item["success_rate"] == pytest.approx(75.0)


def test_alerts_json_and_csv(client, populated_db):
    response = client.get("/alerts", params={"category": "price"})

    assert response.status_code == 200
    assert response.json()["items"][0]["alert_type"] == "last_minute_deal"

    csv_response = client.get("/alerts", params={"format": "csv"})

    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert "last_minute_deal" in csv_response.text


def test_unsupported_format_is_rejected(client):
    response = client.get("/observations", params={"format": "xml"})

    assert response.status_code == 400


def test_entity_filter_is_json_only(client):
    response = client.get("/observations", params={"format": "csv", "entity_id": "rakuten_1001"})

    assert response.status_code == 400


def test_forecast_without_history_is_synthetic(client):
    response = client.get(
        "/entities/rakuten_1001/forecast",
        params={"room_category": "deluxe", "check_in": "2025-07-12", "days": 3},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "synthetic"
    assert body["model_version"] == "demo"
    assert [point["target_date"] for point in body["points"]] == [
        "2025-07-12",
        "2025-07-13",
        "2025-07-14",
    ]


def test_forecast_fits_only_the_requested_category_and_stay(client, settings):
    now = datetime.now(UTC)
    check_in = date(2025, 7, 12)
    deluxe = [
        make_observation(price, check_in=check_in, observed_at=now - timedelta(hours=6 - index))
        for index, price in enumerate([20000, 20500, 21000, 21500, 22000])
    ]
    others = [
        make_observation(90000, check_in=check_in, room_category="suite", observed_at=now - timedelta(hours=1)),
        make_observation(95000, check_in=check_in, room_category="suite", observed_at=now - timedelta(minutes=30)),
        make_observation(5000, check_in=date(2025, 7, 20), observed_at=now - timedelta(minutes=10)),
    ]
    conn = db.connect(settings.db_path)
    try:
        db.insert_observations(conn, deluxe + others)
    finally:
        conn.close()

    response = client.get(
        "/entities/rakuten_1001/forecast",
        params={"room_category": "deluxe", "check_in": "2025-07-12", "days": 2},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "statistical"
    assert body["data_points"] == 5
    assert [point["predicted_price"] for point in body["points"]] == [22000, 22500]


def test_forecast_requires_room_category(client):
    response = client.get("/entities/rakuten_1001/forecast", params={"check_in": "2025-07-12"})

    assert response.status_code == 422
