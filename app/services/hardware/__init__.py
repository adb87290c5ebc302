"""
Hardware Service Layer
======================
Access to the cloud device gateway that controls taps and reads soil sensors.

- SignedDeviceClient: HMAC-signed requests with a per-instance token cache
- parse_soil_status: moisture / temperature / battery from a status map
"""

from app.services.hardware.device_client import CredentialCache, SignedDeviceClient
from app.services.hardware.soil_sensor import SoilStatus, parse_soil_status, require_moisture

__all__ = [
    "CredentialCache",
    "SignedDeviceClient",
    "SoilStatus",
    "parse_soil_status",
    "require_moisture",
]
