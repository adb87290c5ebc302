"""
Watering API Blueprint
======================

Zones, manual tap control, history, weather and the live soil sensor.

Routes:
- GET /api/v1/zones - configured zones with their idle/active state
- POST /api/v1/zones/<zone_id>/watering - manual start/stop
- GET /api/v1/history?limit=&zone_id= - sessions, weather snapshots, stats
- GET /api/v1/weather - weather signal and rule-based recommendation
- GET /api/v1/soil-sensor[?zone=] - live parsed sensor reading
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, request
from pydantic import ValidationError

from app.blueprints.api._common import (
    default_zone_id,
    fail,
    get_container,
    get_int_arg,
    get_json,
    get_zone_or_404,
    success,
)
from app.domain.exceptions import NotFoundError
from app.enums import TriggerKind
from app.schemas.watering import WateringAction, WateringControlRequest
from app.services.hardware.soil_sensor import parse_soil_status
from app.utils.http import safe_route

watering_api = Blueprint("watering_api", __name__)
logger = logging.getLogger("watering_api")


# ==================== Zones ====================


@watering_api.get("/zones")
@safe_route("Failed to list zones")
def list_zones() -> Response:
    container = get_container()
    zones = []
    for zone in container.config.zones:
        state = container.lifecycle_service.state(zone.zone_id)
        zones.append(
            {
                **zone.to_dict(),
                **state.to_dict(),
                "last_reading": container.history_service.latest_reading(zone.zone_id),
            }
        )
    return success({"zones": zones, "count": len(zones)})


@watering_api.post("/zones/<zone_id>/watering")
@safe_route("Failed to control watering")
def control_watering(zone_id: str) -> Response:
    """
    Start or stop a zone by hand.

    Request body:
    - action: "start" | "stop"
    - duration_minutes: optional; a start with a duration stops automatically
    """
    zone = get_zone_or_404(zone_id)
    try:
        body = WateringControlRequest(**get_json())
    except ValidationError as ve:
        return fail("Invalid request", 400, details={"errors": ve.errors(include_url=False, include_context=False)})

    lifecycle = get_container().lifecycle_service
    if body.action == WateringAction.START:
        trigger = TriggerKind.SCHEDULED if body.duration_minutes else TriggerKind.MANUAL
        logger.info("Manual start for zone %s (%s)", zone.zone_id, trigger)
        result = lifecycle.start(zone, trigger, body.duration_minutes, actor="api")
        return success(result.to_dict(), 201 if result.changed else 200, message=result.message)

    logger.info("Manual stop for zone %s", zone.zone_id)
    result = lifecycle.stop_active(zone.zone_id, end_reason="manual", actor="api")
    return success(result.to_dict(), message=result.message)


# ==================== History ====================


@watering_api.get("/history")
@safe_route("Failed to load watering history")
def get_history() -> Response:
    limit = get_int_arg("limit", 50)
    zone_id = request.args.get("zone_id") or None
    return success(get_container().history_service.get_history(limit=limit, zone_id=zone_id))


# ==================== Weather ====================


@watering_api.get("/weather")
@safe_route("Failed to fetch weather")
def get_weather() -> Response:
    weather = get_container().weather_service
    signal = weather.fetch()
    return success(
        {
            "weather": signal.to_dict(),
            "watering_recommendation": weather.recommend(signal).to_dict(),
        }
    )


# ==================== Soil sensor ====================


@watering_api.get("/soil-sensor")
@safe_route("Failed to read soil sensor")
def get_soil_sensor() -> Response:
    zone_id = request.args.get("zone") or default_zone_id()
    if zone_id is None:
        raise NotFoundError("No zones configured")
    zone = get_zone_or_404(zone_id)
    if not zone.sensor_device_id:
        raise NotFoundError(f"Zone '{zone.zone_id}' has no soil sensor configured")

    container = get_container()
    soil = parse_soil_status(container.device_client.read_status(zone.sensor_device_id))
    return success(
        {
            "zone_id": zone.zone_id,
            **soil.to_dict(),
            "last_reading": container.history_service.latest_reading(zone.zone_id),
        }
    )


__all__ = ["watering_api"]
