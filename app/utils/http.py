"""JSON response envelopes and error mapping for the API blueprints.

Every API response has the shape ``{"ok", "data", "error", "message"}``.
Domain errors (:class:`~app.domain.exceptions.SmartWateringError`) map to
their ``http_status``. For 4xx the message goes back to the caller. For 5xx
the client gets a generic message per status and the real exception is
logged. ``error.kind`` names the exception class.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any, Callable

from flask import Response, jsonify

from app.utils.time import iso_now

if TYPE_CHECKING:
    from app.domain.exceptions import SmartWateringError

_log = logging.getLogger(__name__)

_GENERIC_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    401: "Authentication required",
    404: "Resource not found",
    409: "Conflict",
    500: "An internal error occurred",
    502: "Upstream service unavailable",
    503: "Device gateway unavailable",
}


def success_response(
    data: dict | list | None = None,
    status: int = 200,
    *,
    message: str | None = None,
) -> Response:
    payload: dict[str, Any] = {"ok": True, "data": data, "error": None}
    if message is not None:
        payload["message"] = message
    response = jsonify(payload)
    response.status_code = status
    return response


def error_response(
    message: str,
    status: int = 500,
    *,
    details: dict | None = None,
    kind: str | None = None,
    code: int | str | None = None,
) -> Response:
    error: dict[str, Any] = {"message": message, "timestamp": iso_now()}
    if kind:
        error["kind"] = kind
    if code is not None:
        error["code"] = code
    body: dict[str, Any] = {"ok": False, "data": None, "error": error, "message": message}
    if details:
        body["details"] = details
    response = jsonify(body)
    response.status_code = status
    return response


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log *exc* server-side and answer with the generic message for *status*."""
    _log.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    return error_response(_GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500]), status)


def domain_error_response(exc: "SmartWateringError", *, context: str = "") -> Response:
    """Map a domain exception onto the error envelope (with the gateway code, if any)."""
    status = exc.http_status
    kind = type(exc).__name__
    code = getattr(exc, "code", None)
    if status >= 500:
        _log.error("API error [%s] %s: %s %s %s", status, context, kind, exc, exc.detail or "", exc_info=exc)
        message = _GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500])
    else:
        message = str(exc) or context or _GENERIC_MESSAGES.get(status, "Request failed")
    return error_response(message, status, kind=kind, code=code)


def safe_route(
    error_message: str = "An internal error occurred",
    *,
    error_status: int = 500,
) -> Callable:
    """Wrap a route so every exception becomes a JSON error envelope.

    Usage::

        @watering_api.get("/weather")
        @safe_route("Failed to fetch weather")
        def get_weather():
            ...
    """
    from app.domain.exceptions import SmartWateringError

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except SmartWateringError as exc:
                return domain_error_response(exc, context=error_message)
            except Exception as exc:
                return safe_error(exc, error_status, context=error_message)

        return wrapper

    return decorator
