"""Travel-inventory API ingestor.

Turns hotel search and vacancy search responses into ``TrackedEntity`` and
``Observation`` records. Both the nested list-of-sections layout the upstream
API returns and a flat per-hotel mapping are accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

from pipelines.client import RateLimitedClient
from pipelines.common import coerce_float, coerce_int, is_weekend, season_for
from pipelines.model import Observation, TrackedEntity, utcnow

HOTEL_SEARCH_ENDPOINT = "/Travel/SimpleHotelSearch/20170426"
VACANCY_SEARCH_ENDPOINT = "/Travel/VacantHotelSearch/20170426"

# Luxury hotel search around a city centre
ENTITY_SEARCH_PARAMS: Mapping[str, Any] = {
    "classCode": "5,4",
    "minCharge": 30000,
    "searchRadius": 3,
    "sort": "standard",
    "hits": 30,
}

VACANCY_SEARCH_PARAMS: Mapping[str, Any] = {
    "searchRadius": 1,
    "minCharge": 20000,
    "hits": 10,
}

DEFAULT_AVAILABLE_UNITS = 5

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StayWindow:
    check_in: date
    check_out: date
    days_until_checkin: int


def generate_stay_windows(days: int, *, today: date | None = None) -> list[StayWindow]:
    """One-night windows starting today and on each of the following days."""

    start = today or date.today()
    windows = []
    for offset in range(days):
        check_in = start + timedelta(days=offset)
        windows.append(
            StayWindow(
                check_in=check_in,
                check_out=check_in + timedelta(days=1),
                days_until_checkin=offset,
            )
        )
    return windows


def hotel_class_from_review(review_average: Any) -> int:
    rating = coerce_float(review_average)
    if rating is None:
        return 4
    if rating >= 4.5:
        return 5
    if rating >= 4.0:
        return 4
    if rating >= 3.5:
        return 3
    if rating >= 3.0:
        return 2
    return 1


def _flatten_rooms(raw_rooms: Any) -> list[dict[str, Any]]:
    """
    Rooms arrive either as flat mappings or as alternating
    ``{"roomBasicInfo": ...}`` / ``{"dailyCharge": ...}`` sections.
    """
    rooms: list[dict[str, Any]] = []
    if not isinstance(raw_rooms, list):
        return rooms
    for item in raw_rooms:
        if not isinstance(item, Mapping):
            continue
        if "roomBasicInfo" in item:
            basic = item["roomBasicInfo"]
            rooms.append(dict(basic) if isinstance(basic, Mapping) else {})
        elif "dailyCharge" in item:
            charge = item["dailyCharge"]
            if rooms and isinstance(charge, Mapping):
                rooms[-1].update(charge)
        else:
            rooms.append(dict(item))
    return rooms


def _flatten_hotel(raw: Any) -> dict[str, Any]:
    hotel = raw.get("hotel", raw) if isinstance(raw, Mapping) else None

    # 1) Sectioned layout: [{"hotelBasicInfo": {...}}, {"roomInfo": [...]}, ...]
    if isinstance(hotel, list):
        merged: dict[str, Any] = {}
        rooms: list[dict[str, Any]] = []
        for section in hotel:
            if not isinstance(section, Mapping):
                continue
            for key, value in section.items():
                if key == "roomInfo":
                    rooms.extend(_flatten_rooms(value))
                elif isinstance(value, Mapping):
                    merged.update(value)
        merged["roomInfo"] = rooms
        return merged

    # 2) Flat layout fallback
    if isinstance(hotel, Mapping):
        flat = dict(hotel)
        flat["roomInfo"] = _flatten_rooms(hotel.get("roomInfo"))
        return flat
    return {}


def iter_hotels(payload: Any) -> Iterable[dict[str, Any]]:
    hotels = payload.get("hotels") if isinstance(payload, Mapping) else payload
    if not isinstance(hotels, list):
        return
    for raw in hotels:
        flat = _flatten_hotel(raw)
        if flat.get("hotelNo") is not None:
            yield flat


def parse_entities(
    payload: Any,
    *,
    city_name: str,
    latitude: float,
    longitude: float,
    api_source: str = "rakuten",
    crawled_at: datetime | None = None,
) -> list[TrackedEntity]:
    """Normalize a hotel search response into tracked entities."""

    entities: list[TrackedEntity] = []
    seen: set[str] = set()
    for hotel in iter_hotels(payload):
        hotel_no = str(hotel["hotelNo"])
        if hotel_no in seen:
            continue
        seen.add(hotel_no)
        address = " ".join(
            part for part in (hotel.get("address1"), hotel.get("address2")) if part
        )
        entities.append(
            TrackedEntity(
                external_id=f"{api_source}_{hotel_no}",
                api_source=api_source,
                api_hotel_id=hotel_no,
                name=hotel.get("hotelName") or hotel_no,
                city=city_name,
                address=address or None,
                latitude=coerce_float(hotel.get("latitude")) or latitude,
                longitude=coerce_float(hotel.get("longitude")) or longitude,
                hotel_class=hotel_class_from_review(hotel.get("reviewAverage")),
                priority=1,
                is_active=True,
                last_crawled_at=crawled_at or utcnow(),
            )
        )
    return entities


def _available_units(room: Mapping[str, Any]) -> int:
    for key in ("availableRooms", "stock"):
        explicit = coerce_int(room.get(key))
        if explicit is not None:
            return max(explicit, 0)
    return DEFAULT_AVAILABLE_UNITS if room.get("reserve") == "OK" else 0


def parse_observations(
    payload: Any,
    entity: TrackedEntity,
    window: StayWindow,
    *,
    last_minute_horizon: int = 3,
    observed_at: datetime | None = None,
) -> list[Observation]:
    """Extract observations for ``entity`` from a vacancy search response.

    Plans sharing a room category are collapsed to the cheapest one, so each
    (entity, stay window, room category) key gets one observation per crawl.
    """

    observed = observed_at or utcnow()
    cheapest: dict[str, tuple[float, dict[str, Any]]] = {}
    for hotel in iter_hotels(payload):
        if str(hotel["hotelNo"]) != entity.api_hotel_id:
            continue
        for room in hotel["roomInfo"]:
            price = coerce_float(room.get("total") or room.get("charge") or room.get("rakutenCharge"))
            if price is None or price <= 0:
                continue
            category = str(room.get("roomClass") or "standard")
            if category not in cheapest or price < cheapest[category][0]:
                cheapest[category] = (price, room)
        break

    return [
        Observation(
            entity_id=entity.external_id,
            check_in=window.check_in,
            check_out=window.check_out,
            room_category=category,
            room_name=room.get("roomName"),
            price=price,
            available_units=_available_units(room),
            is_last_minute=window.days_until_checkin <= last_minute_horizon,
            days_before_checkin=window.days_until_checkin,
            day_of_week=window.check_in.weekday(),
            season=season_for(window.check_in),
            is_weekend=is_weekend(window.check_in),
            api_source=entity.api_source,
            observed_at=observed,
            raw_payload=room,
        )
        for category, (price, room) in cheapest.items()
    ]


async def fetch_entities(
    client: RateLimitedClient,
    *,
    city_name: str,
    latitude: float,
    longitude: float,
    params: Mapping[str, Any] | None = None,
) -> list[TrackedEntity]:
    """Search luxury hotels around a city centre."""

    request_params = {**ENTITY_SEARCH_PARAMS, "latitude": latitude, "longitude": longitude}
    if params:
        request_params.update(params)
    payload = await client.get(HOTEL_SEARCH_ENDPOINT, request_params)
    entities = parse_entities(
        payload,
        city_name=city_name,
        latitude=latitude,
        longitude=longitude,
        api_source=client.api_source,
    )
    logger.info("Found %s hotels around %s", len(entities), city_name)
    return entities


async def fetch_availability(
    client: RateLimitedClient,
    entity: TrackedEntity,
    window: StayWindow,
    *,
    last_minute_horizon: int = 3,
) -> list[Observation]:
    """Query vacancy for one entity and stay window."""

    request_params = {
        **VACANCY_SEARCH_PARAMS,
        "latitude": entity.latitude,
        "longitude": entity.longitude,
        "checkinDate": window.check_in.isoformat(),
        "checkoutDate": window.check_out.isoformat(),
    }
    payload = await client.get(
        VACANCY_SEARCH_ENDPOINT, request_params, entity_id=entity.external_id
    )
    return parse_observations(
        payload, entity, window, last_minute_horizon=last_minute_horizon
    )


__all__ = [
    "ENTITY_SEARCH_PARAMS",
    "HOTEL_SEARCH_ENDPOINT",
    "StayWindow",
    "VACANCY_SEARCH_ENDPOINT",
    "fetch_availability",
    "fetch_entities",
    "generate_stay_windows",
    "hotel_class_from_review",
    "parse_entities",
    "parse_observations",
]
