"""
Device API Blueprint
====================

Live device status read through the signed device gateway.

Routes:
- GET /api/v1/devices/<device_id> - online flag, switch state and raw status map
"""

from __future__ import annotations

from flask import Blueprint, Response

from app.blueprints.api._common import get_container, success
from app.utils.http import safe_route

devices_api = Blueprint("devices_api", __name__)


@devices_api.get("/<device_id>")
@safe_route("Failed to read device status")
def get_device_status(device_id: str) -> Response:
    state = get_container().device_client.read_status(device_id)
    return success(state.to_dict())


__all__ = ["devices_api"]
