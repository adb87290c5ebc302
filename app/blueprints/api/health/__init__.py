"""
Health API Blueprint
====================

Liveness and configuration readiness of the watering engine.

Routes:
- GET /api/v1/health - liveness plus readiness checks
- GET /api/v1/health/ping - basic liveness check
"""

from __future__ import annotations

from flask import Blueprint

health_api = Blueprint("health_api", __name__)

from app.blueprints.api.health.system import register_system_routes

register_system_routes(health_api)

__all__ = ["health_api"]
