"""
System Health Endpoints
=======================

Reports whether the process is alive and whether it is configured well
enough to water: database reachable, gateway credentials set, zones defined.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_container as _container, success as _success
from app.config import validate_config
from app.utils.http import safe_route
from app.utils.time import iso_now

logger = logging.getLogger("health_api")


def _database_ok(container) -> bool:
    try:
        with container.database.connection() as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False
    return True


def register_system_routes(health_api: Blueprint):
    """Register system health routes on the blueprint."""

    @health_api.get("/ping")
    @safe_route("Failed to handle ping request")
    def ping() -> Response:
        """
        Basic liveness check for monitoring tools.

        Returns:
            {"status": "ok", "timestamp": "..."}
        """
        return _success({"status": "ok", "timestamp": iso_now()})

    @health_api.get("")
    @safe_route("Failed to get system health")
    def get_health() -> Response:
        """
        Liveness plus configuration readiness.

        Returns:
            {
                "status": "ok|degraded",
                "ready": true,
                "checks": {...},
                "warnings": [...],
                "timestamp": "..."
            }
        """
        container = _container()
        config = container.config
        checks = {
            "database": _database_ok(container),
            "device_credentials": config.device_credentials_configured,
            "zones_configured": bool(config.zones),
            "cron_auth": bool(config.cron_secret),
        }
        ready = checks["database"] and checks["device_credentials"] and checks["zones_configured"]
        return _success(
            {
                "status": "ok" if ready else "degraded",
                "ready": ready,
                "checks": checks,
                "zones": [zone.zone_id for zone in config.zones],
                "decision_strategies": container.decision_engine.strategy_names,
                "advisor": container.watering_advisor.provider_name,
                "watering_window": {
                    "start_hour": config.window_start_hour,
                    "end_hour": config.window_end_hour,
                    "timezone": config.timezone,
                },
                "warnings": validate_config(config),
                "timestamp": iso_now(),
            }
        )
