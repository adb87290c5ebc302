"""
Signed Device Client
====================
Talks to the cloud device gateway (Tuya OpenAPI style) that controls the
taps and soil sensors.

Every request is signed::

    canonical = METHOD \\n sha256_hex(body) \\n "" \\n path_with_query
    sign      = HMAC_SHA256(secret, client_id [+ access_token] + t + canonical)

and carries ``client_id``, ``t`` (milliseconds), ``sign`` and
``sign_method`` headers, plus ``access_token`` once authorized. The access
token is held in a :class:`CredentialCache` owned by the client instance and
is refreshed once ``now >= expiry - margin``.

Errors are never retried here; callers decide what to do with them.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable

import requests

from app.domain.exceptions import (
    DeviceApiError,
    DeviceAuthError,
    DeviceTransportError,
)
from app.domain.watering import DeviceState

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1.0/token?grant_type=1"
SIGN_METHOD = "HMAC-SHA256"
# Gateway code for an expired or revoked access token
TOKEN_INVALID_CODE = 1010


def build_canonical_string(method: str, path: str, body: str = "") -> str:
    """Canonical request string used as the signature payload."""
    content_hash = hashlib.sha256(body.encode("utf-8")).hexdigest()
    return "\n".join([method.upper(), content_hash, "", path])


def compute_signature(
    secret: str,
    client_id: str,
    timestamp: str,
    canonical: str,
    access_token: str | None = None,
) -> str:
    """Uppercase hex HMAC-SHA256 over ``client_id [+ token] + t + canonical``."""
    message = client_id + (access_token or "") + timestamp + canonical
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest().upper()


class CredentialCache:
    """Access token plus absolute expiry, private to one client instance."""

    def __init__(self, margin_seconds: float = 60.0, clock: Callable[[], float] = time.time):
        self.margin_seconds = margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def get(self) -> str | None:
        """Return the cached token, or None once it is inside the refresh margin."""
        if self._token is None:
            return None
        if self._clock() >= self._expires_at - self.margin_seconds:
            return None
        return self._token

    def store(self, token: str, expires_in_seconds: float) -> None:
        self._token = token
        self._expires_at = self._clock() + float(expires_in_seconds)

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


class SignedDeviceClient:
    """
    HTTP client for the signed device gateway.

    Args:
        endpoint: Base URL, e.g. ``https://openapi.tuyaeu.com``.
        client_id: Gateway access id.
        client_secret: Gateway access secret used as the HMAC key.
        timeout: Per-request timeout in seconds.
        cache: Credential cache; a private one is created when omitted.
        session: ``requests.Session`` (or compatible) used for all calls.
        clock: Seconds-since-epoch source, shared with the default cache.
    """

    def __init__(
        self,
        endpoint: str,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 10.0,
        cache: CredentialCache | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        token_margin_seconds: float = 60.0,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.client_id = client_id
        self._secret = client_secret
        self.timeout = timeout
        self._clock = clock
        self.cache = cache or CredentialCache(margin_seconds=token_margin_seconds, clock=clock)
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def access_token(self) -> str:
        """Return a valid access token, fetching a new one when needed."""
        token = self.cache.get()
        if token:
            return token

        logger.debug("Fetching new device gateway access token")
        try:
            result = self._request("GET", TOKEN_PATH, authorized=False)
        except DeviceApiError as exc:
            raise DeviceAuthError(
                f"Credential request rejected: {exc.remote_message or exc}",
                detail={"code": exc.code},
            ) from exc

        if not isinstance(result, dict) or not result.get("access_token"):
            raise DeviceAuthError("Credential response did not contain an access token")

        self.cache.store(result["access_token"], float(result.get("expire_time", 0)))
        return result["access_token"]

    def read_status(self, device_id: str) -> DeviceState:
        """Read the current status of *device_id*."""
        result = self._request("GET", f"/v1.0/devices/{device_id}")
        if not isinstance(result, dict):
            raise DeviceTransportError(f"Unexpected status payload for device {device_id}")

        status: dict[str, Any] = {}
        for item in result.get("status") or []:
            if isinstance(item, dict) and "code" in item:
                status[item["code"]] = item.get("value")

        return DeviceState(
            device_id=result.get("id", device_id),
            online=bool(result.get("online", False)),
            status=status,
            name=result.get("name"),
        )

    def send_command(self, device_id: str, code: str, value: Any) -> bool:
        """Send a single ``{code, value}`` command. Raises unless acknowledged."""
        body = json.dumps({"commands": [{"code": code, "value": value}]})
        result = self._request("POST", f"/v1.0/devices/{device_id}/commands", body=body)
        if result is not True:
            raise DeviceApiError(
                f"Command {code}={value!r} was not acknowledged by device {device_id}",
                detail={"result": result},
            )
        logger.info("Device %s command %s=%r acknowledged", device_id, code, value)
        return True

    def turn_on(self, device_id: str) -> bool:
        return self.send_command(device_id, "switch", True)

    def turn_off(self, device_id: str) -> bool:
        return self.send_command(device_id, "switch", False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self, method: str, path: str, body: str, token: str | None) -> dict[str, str]:
        timestamp = str(int(self._clock() * 1000))
        canonical = build_canonical_string(method, path, body)
        headers = {
            "client_id": self.client_id,
            "t": timestamp,
            "sign": compute_signature(self._secret, self.client_id, timestamp, canonical, token),
            "sign_method": SIGN_METHOD,
        }
        if token:
            headers["access_token"] = token
        if body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(self, method: str, path: str, *, body: str = "", authorized: bool = True) -> Any:
        token = self.access_token() if authorized else None
        headers = self._headers(method, path, body, token)
        url = f"{self.endpoint}{path}"

        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                data=body.encode("utf-8") if body else None,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise DeviceTransportError(f"{method} {path} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise DeviceTransportError(
                f"{method} {path} returned a non-JSON body (HTTP {response.status_code})"
            ) from exc

        if not isinstance(payload, dict):
            raise DeviceTransportError(f"{method} {path} returned an unexpected payload")

        if not payload.get("success"):
            code = payload.get("code")
            msg = payload.get("msg")
            if code == TOKEN_INVALID_CODE:
                self.cache.clear()
            logger.warning("Device gateway rejected %s %s: code=%s msg=%s", method, path, code, msg)
            raise DeviceApiError(
                f"{method} {path} failed: {msg or 'unknown error'}",
                code=code,
                remote_message=msg,
            )

        return payload.get("result")
