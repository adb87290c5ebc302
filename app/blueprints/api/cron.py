"""
Scheduler Trigger API
=====================

Endpoints hit by an external cron service. Both accept GET and POST and
require ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured.

Routes:
- GET|POST /api/v1/cron/auto-water[?zone=<id>] - evaluate and possibly start
- GET|POST /api/v1/cron/water-check - stop sessions past their scheduled end

The body is the scheduler's structured result; status is 200 when
``success`` is true and 500 otherwise, so cron services flag failed runs.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request

from app.blueprints.api._common import get_container, get_zone_or_404
from app.security.cron_auth import require_cron_secret
from app.utils.http import safe_route

logger = logging.getLogger("cron_api")

cron_api = Blueprint("cron_api", __name__)


def _respond(result) -> tuple[Response, int]:
    if not result.success:
        logger.warning("Scheduler run failed (%s): %s", result.action, result.reason)
    return jsonify(result.to_dict()), 200 if result.success else 500


@cron_api.route("/auto-water", methods=["GET", "POST"])
@safe_route("Auto-water run failed")
@require_cron_secret
def auto_water():
    """Evaluate one zone (``?zone=``) or every configured zone."""
    zone_id = request.args.get("zone") or None
    if zone_id is not None:
        get_zone_or_404(zone_id)
    result = get_container().watering_scheduler.evaluate_zones(zone_id)
    return _respond(result)


@cron_api.route("/water-check", methods=["GET", "POST"])
@safe_route("Water check failed")
@require_cron_secret
def water_check():
    result = get_container().watering_scheduler.check_and_stop()
    return _respond(result)
