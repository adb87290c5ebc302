"""Centralized exception hierarchy for the watering engine.

All domain and service exceptions inherit from :class:`SmartWateringError` so
that callers can catch a single base class when they need a broad safety net,
yet still match on specific subclasses where narrower handling is appropriate.

Blueprint-level error handling (see ``app/utils/http.safe_route``) maps these
to the correct HTTP status codes automatically.

Hierarchy
---------
::

    SmartWateringError (base, maps to 500)
    ├── ValidationError              (400: bad input from caller)
    ├── UnauthorizedError            (401: bad or missing trigger secret)
    ├── NotFoundError                (404: entity does not exist)
    ├── ConflictError                (409: duplicate / state conflict)
    ├── ServiceError                 (500: business-logic failure)
    │   ├── RepositoryError          (500: database / persistence)
    │   └── ExternalServiceError     (502: third-party / network)
    │       ├── WeatherUnavailableError
    │       └── AdvisoryError
    │           ├── AdvisoryParseError       (no JSON object in the reply)
    │           └── AdvisoryValidationError  (JSON present, fields invalid)
    ├── DeviceError                  (503: device gateway communication)
    │   ├── DeviceAuthError          (credential fetch/refresh rejected)
    │   ├── DeviceApiError           (gateway answered success=false)
    │   ├── DeviceTransportError     (connection, timeout, malformed body)
    │   ├── DeviceOfflineError       (device reports itself offline)
    │   └── SensorReadError          (moisture value missing/unparseable)
    └── ConfigurationError           (500: missing / invalid config)
"""

from __future__ import annotations


class SmartWateringError(Exception):
    """Base exception for all application errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side, **not** leaked to
        the HTTP client unless the exception class opts in).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(SmartWateringError):
    """Caller supplied invalid or incomplete input (HTTP 400)."""

    http_status: int = 400


class UnauthorizedError(SmartWateringError):
    """Trigger request without a valid shared secret (HTTP 401)."""

    http_status: int = 401


class NotFoundError(SmartWateringError):
    """Requested entity does not exist (HTTP 404)."""

    http_status: int = 404


class ConflictError(SmartWateringError):
    """Operation conflicts with existing state (HTTP 409)."""

    http_status: int = 409


# ── Server errors (5xx) ──────────────────────────────────────────────


class ServiceError(SmartWateringError):
    """Business-logic failure in a service method (HTTP 500)."""

    http_status: int = 500


class RepositoryError(ServiceError):
    """Database / persistence layer failure (HTTP 500)."""

    http_status: int = 500


class ExternalServiceError(ServiceError):
    """Third-party or network dependency failure (HTTP 502)."""

    http_status: int = 502


class WeatherUnavailableError(ExternalServiceError):
    """Weather provider could not be reached or returned garbage."""


class AdvisoryError(ExternalServiceError):
    """Advisory reasoning service failed; callers fall back to rules."""


class AdvisoryParseError(AdvisoryError):
    """No JSON object could be extracted from the advisory reply."""


class AdvisoryValidationError(AdvisoryError):
    """A JSON object was found but its fields do not form a decision."""


class DeviceError(SmartWateringError):
    """Device gateway communication or protocol failure (HTTP 503)."""

    http_status: int = 503


class DeviceAuthError(DeviceError):
    """The gateway rejected the credential request."""


class DeviceApiError(DeviceError):
    """The gateway answered, but with ``success: false``.

    ``code`` and ``remote_message`` carry the gateway's own error fields.
    """

    def __init__(
        self,
        message: str = "",
        *,
        code: int | str | None = None,
        remote_message: str | None = None,
        detail: dict | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.code = code
        self.remote_message = remote_message


class DeviceTransportError(DeviceError):
    """Network failure, timeout or unreadable body talking to the gateway."""


class DeviceOfflineError(DeviceError):
    """Device is registered but reports itself offline."""


class SensorReadError(DeviceError):
    """Sensor status had no usable moisture value."""


class ConfigurationError(SmartWateringError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
