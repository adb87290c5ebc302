"""
Blueprint Common Utilities
==========================

Shared helper functions for all API blueprints.

Usage:
    from app.blueprints.api._common import (
        get_container, get_json, success, fail, get_zone_or_404,
    )
"""
from __future__ import annotations

from flask import current_app, request

from app.domain.exceptions import NotFoundError
from app.utils.http import error_response, success_response

# ============================================================================
# CONTAINER ACCESS
# ============================================================================


def get_container():
    """
    Get the service container from Flask app config.

    Returns:
        ServiceContainer: The application service container

    Raises:
        RuntimeError: If container is not configured
    """
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def get_zone_or_404(zone_id: str):
    """Return the configured zone or raise NotFoundError."""
    zone = get_container().config.get_zone(zone_id)
    if zone is None:
        raise NotFoundError(f"Zone '{zone_id}' is not configured")
    return zone


def default_zone_id() -> str | None:
    zones = get_container().config.zones
    return zones[0].zone_id if zones else None


# ============================================================================
# REQUEST HELPERS
# ============================================================================


def get_json() -> dict:
    """Request JSON body, or an empty dict when there is none."""
    return request.get_json(silent=True) or {}


def get_int_arg(name: str, default: int, *, minimum: int = 1, maximum: int = 500) -> int:
    """Integer query argument clamped into ``[minimum, maximum]``."""
    value = request.args.get(name, type=int)
    if value is None:
        return default
    return max(minimum, min(maximum, value))


# ============================================================================
# RESPONSE HELPERS
# ============================================================================


def success(data: dict | list | None = None, status: int = 200, *, message: str | None = None):
    """
    Standard success response wrapper.

    Returns:
        Flask Response with format: {"ok": true, "data": ..., "error": null}
    """
    return success_response(data, status, message=message)


def fail(message: str, status: int = 400, *, details: dict | None = None):
    """
    Standard error response wrapper.

    Returns:
        Flask Response with format: {"ok": false, "data": null, "error": {...}}
    """
    return error_response(message, status, details=details)
