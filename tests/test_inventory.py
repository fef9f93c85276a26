import asyncio
from dataclasses import replace
from datetime import date, timedelta

import httpx

from analysis.changes import PriceChangeAnalyzer
from conftest import FIXED_NOW, make_observation
from jobs.config import get_city_by_key
from jobs.scheduler import build_orchestrator
from pipelines.model import JobStatus
from pipelines.sources.inventory import (
    StayWindow,
    generate_stay_windows,
    hotel_class_from_review,
    parse_entities,
    parse_observations,
)
from resilience.errors import ErrorCategory
from storage import db

SECTIONED_SEARCH = {
    "hotels": [
        {
            "hotel": [
                {
                    "hotelBasicInfo": {
                        "hotelNo": 1001,
                        "hotelName": "Park Hyatt Tokyo",
                        "address1": "Tokyo",
                        "address2": "Shinjuku 3-7-1-2",
                        "latitude": 35.6856,
                        "longitude": 139.6907,
                        "reviewAverage": 4.6,
                    }
                },
                {"hotelRatingInfo": {"serviceAverage": 4.5}},
            ]
        },
        {
            "hotel": [
                {
                    "hotelBasicInfo": {
                        "hotelNo": 2002,
                        "hotelName": "Hotel New Otani",
                        "reviewAverage": "3.7",
                    }
                }
            ]
        },
    ]
}


def _vacancy(hotel_no: int, charge: int) -> dict:
    return {
        "hotel": [
            {"hotelBasicInfo": {"hotelNo": hotel_no, "hotelName": f"Hotel {hotel_no}"}},
            {
                "roomInfo": [
                    {"roomBasicInfo": {"roomClass": "deluxe", "roomName": "Deluxe King", "reserve": "OK"}},
                    {"dailyCharge": {"total": charge, "stayDate": "20250710"}},
                    {"roomBasicInfo": {"roomClass": "suite", "roomName": "Suite"}},
                    {"dailyCharge": {"total": 0}},
                ]
            },
        ]
    }


def test_sectioned_search_response_becomes_entities():
    entities = parse_entities(
        SECTIONED_SEARCH, city_name="Tokyo", latitude=35.6762, longitude=139.6503
    )

    first, second = entities
    assert first.external_id == "rakuten_1001"
    assert first.api_hotel_id == "1001"
    assert first.address == "Tokyo Shinjuku 3-7-1-2"
    assert first.hotel_class == 5
    assert first.latitude == 35.6856
    # missing coordinates fall back to the city centre
    assert second.latitude == 35.6762
    assert second.hotel_class == 3


def test_flat_vacancy_payload_is_accepted():
    entity = parse_entities(
        SECTIONED_SEARCH, city_name="Tokyo", latitude=35.6762, longitude=139.6503
    )[0]
    window = StayWindow(check_in=date(2025, 7, 12), check_out=date(2025, 7, 13), days_until_checkin=2)
    payload = {
        "hotels": [
            {
                "hotel": {
                    "hotelNo": 1001,
                    "roomInfo": [{"roomClass": "twin", "charge": "48,000", "stock": 2}],
                }
            }
        ]
    }

    (observation,) = parse_observations(payload, entity, window, observed_at=FIXED_NOW)

    assert observation.price == 48000.0
    assert observation.room_category == "twin"
    assert observation.available_units == 2
    assert observation.is_last_minute
    assert observation.is_weekend
    assert observation.season == "summer"


def test_sectioned_vacancy_skips_rooms_without_price():
    entity = parse_entities(
        SECTIONED_SEARCH, city_name="Tokyo", latitude=35.6762, longitude=139.6503
    )[0]
    window = StayWindow(check_in=date(2025, 7, 20), check_out=date(2025, 7, 21), days_until_checkin=10)

    observations = parse_observations({"hotels": [_vacancy(1001, 52000), _vacancy(2002, 1)]}, entity, window)

    (observation,) = observations
    assert observation.price == 52000.0
    assert observation.room_name == "Deluxe King"
    assert observation.available_units == 5
    assert not observation.is_last_minute


def _two_plan_vacancy() -> dict:
    return {
        "hotels": [
            {
                "hotel": [
                    {"hotelBasicInfo": {"hotelNo": 1001}},
                    {
                        "roomInfo": [
                            {"roomBasicInfo": {"roomClass": "deluxe", "planId": 1, "roomName": "Deluxe Room Only"}},
                            {"dailyCharge": {"total": 20000}},
                            {"roomBasicInfo": {"roomClass": "deluxe", "planId": 2, "roomName": "Deluxe Breakfast"}},
                            {"dailyCharge": {"total": 30000}},
                        ]
                    },
                ]
            }
        ]
    }


def test_plans_of_one_room_class_collapse_to_cheapest():
    entity = parse_entities(
        SECTIONED_SEARCH, city_name="Tokyo", latitude=35.6762, longitude=139.6503
    )[0]
    window = StayWindow(check_in=date(2025, 7, 20), check_out=date(2025, 7, 21), days_until_checkin=10)

    (observation,) = parse_observations(_two_plan_vacancy(), entity, window, observed_at=FIXED_NOW)

    assert observation.price == 20000.0
    assert observation.room_name == "Deluxe Room Only"


def test_unchanged_plans_across_crawls_raise_no_price_events():
    entity = parse_entities(
        SECTIONED_SEARCH, city_name="Tokyo", latitude=35.6762, longitude=139.6503
    )[0]
    window = StayWindow(check_in=date(2025, 7, 20), check_out=date(2025, 7, 21), days_until_checkin=10)

    first = parse_observations(_two_plan_vacancy(), entity, window, observed_at=FIXED_NOW)
    second = parse_observations(
        _two_plan_vacancy(), entity, window, observed_at=FIXED_NOW + timedelta(minutes=15)
    )
    result = PriceChangeAnalyzer().analyze(first + second)

    assert result.events == []
    assert result.alerts == []


def test_review_average_maps_to_hotel_class():
    assert [hotel_class_from_review(value) for value in (4.8, 4.0, 3.5, 3.1, 2.0)] == [5, 4, 3, 2, 1]
    assert hotel_class_from_review(None) == 4
    assert hotel_class_from_review("N/A") == 4


def test_stay_windows_cover_the_next_days():
    windows = generate_stay_windows(3, today=date(2025, 7, 10))

    assert [(w.check_in.day, w.check_out.day, w.days_until_checkin) for w in windows] == [
        (10, 11, 0),
        (11, 12, 1),
        (12, 13, 2),
    ]


def _crawl_settings(settings):
    return replace(settings, cities=(get_city_by_key("tokyo"),), search_days=2)


def test_full_crawl_discovers_hotels_and_records_prices(settings, recorder, clock):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/Travel/SimpleHotelSearch/20170426"):
            return httpx.Response(200, json=SECTIONED_SEARCH)
        return httpx.Response(200, json={"hotels": [_vacancy(1001, 52000), _vacancy(2002, 31000)]})

    orchestrator = build_orchestrator(
        _crawl_settings(settings),
        recorder=recorder,
        transport=httpx.MockTransport(handler),
        sleep=clock.sleep,
        now=lambda: FIXED_NOW,
    )

    run = asyncio.run(orchestrator.trigger("full"))

    assert run.status is JobStatus.COMPLETED
    assert run.details["entities"]["entities_upserted"] == 2
    assert run.details["availability"]["observations"] == 4
    assert (run.processed, run.succeeded, run.failed) == (3, 3, 0)
    # 1 hotel search + 2 hotels x 2 stay windows
    assert len(requests) == 5
    assert requests[0].url.params["applicationId"] == "test-app"

    conn = db.connect(settings.db_path)
    try:
        observations = db.fetch_observations_since(conn, FIXED_NOW - timedelta(days=1))
        entities = db.list_active_entities(conn)
        usage = db.fetch_api_usage(conn, api_source="rakuten")
    finally:
        conn.close()

    assert {obs.entity_id for obs in observations} == {"rakuten_1001", "rakuten_2002"}
    assert {obs.check_in for obs in observations} == {FIXED_NOW.date(), FIXED_NOW.date() + timedelta(days=1)}
    assert all(entity.last_crawled_at == FIXED_NOW for entity in entities)
    assert sum(row.total_calls for row in usage) == 5


def test_failing_entity_is_counted_and_crawl_continues(settings, recorder, clock):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/Travel/SimpleHotelSearch/20170426"):
            return httpx.Response(200, json=SECTIONED_SEARCH)
        if request.url.params["latitude"] == "35.6856":
            return httpx.Response(503)
        return httpx.Response(200, json={"hotels": [_vacancy(2002, 31000)]})

    orchestrator = build_orchestrator(
        _crawl_settings(settings),
        recorder=recorder,
        transport=httpx.MockTransport(handler),
        sleep=clock.sleep,
        now=lambda: FIXED_NOW,
    )

    run = asyncio.run(orchestrator.run_job("full"))

    assert run.status is JobStatus.COMPLETED
    assert run.details["availability"]["failed"] == 1
    assert run.details["availability"]["succeeded"] == 1
    assert run.details["availability"]["observations"] == 2
    assert [error.category for error in recorder.errors] == [ErrorCategory.NETWORK] * 3
    assert all(error.entity_id == "rakuten_1001" for error in recorder.errors)


def test_analysis_job_reports_each_change_once(settings, recorder):
    conn = db.connect(settings.db_path)
    try:
        db.insert_observations(
            conn,
            [
                make_observation(50000, observed_at=FIXED_NOW - timedelta(hours=2)),
                make_observation(35000, observed_at=FIXED_NOW - timedelta(hours=1)),
                make_observation(50000, observed_at=FIXED_NOW - timedelta(hours=2), room_category="suite"),
                make_observation(51000, observed_at=FIXED_NOW - timedelta(hours=1), room_category="suite"),
            ],
        )
    finally:
        conn.close()

    orchestrator = build_orchestrator(settings, recorder=recorder, now=lambda: FIXED_NOW)

    first = asyncio.run(orchestrator.run_job("analysis"))
    second = asyncio.run(orchestrator.run_job("analysis"))

    assert first.details == {"changes": 1, "significant_changes": 1, "alerts": 1, "skipped_known": 0}
    assert second.details["changes"] == 0
    assert second.details["skipped_known"] == 1
    (alert,) = [alert for alert in recorder.alerts if alert.category == "price"]
    assert alert.alert_type == "significant_price_drop"

    conn = db.connect(settings.db_path)
    try:
        (event,) = db.fetch_price_change_events(conn)
    finally:
        conn.close()
    assert event.delta == -15000
    assert event.statistics.insufficient_data
