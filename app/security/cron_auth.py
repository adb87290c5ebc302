"""
Scheduler Trigger Authentication
================================
Shared-secret bearer check for the cron endpoints.

Requests must carry ``Authorization: Bearer <CRON_SECRET>``; the comparison
is constant time. When no secret is configured the check is disabled and a
warning is logged on every request, which is only acceptable in development.
"""

from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Callable, TypeVar, cast

from flask import request

from app.utils.http import error_response

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., object])

_BEARER_PREFIX = "Bearer "


def is_authorized(authorization_header: str | None, secret: str | None) -> bool:
    """True when *authorization_header* carries *secret*, or no secret is set."""
    if not secret:
        logger.warning("CRON_SECRET is not set; scheduler endpoints are unauthenticated")
        return True
    if not authorization_header or not authorization_header.startswith(_BEARER_PREFIX):
        return False
    presented = authorization_header[len(_BEARER_PREFIX):].strip()
    return hmac.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))


def require_cron_secret(view_func: F) -> F:
    """Reject scheduler trigger requests without the shared secret (JSON 401)."""

    @wraps(view_func)
    def wrapped(*args, **kwargs):
        from app.blueprints.api._common import get_container

        secret = get_container().config.cron_secret
        if not is_authorized(request.headers.get("Authorization"), secret):
            logger.warning("Rejected scheduler trigger from %s", request.remote_addr)
            return error_response(
                "Unauthorized",
                status=401,
                details={"code": "UNAUTHORIZED"},
            )
        return view_func(*args, **kwargs)

    return cast(F, wrapped)
