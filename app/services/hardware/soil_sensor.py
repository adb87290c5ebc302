"""Soil sensor status parsing.

Sensors from different vendors report moisture under different data-point
codes, so each value is taken from the first code present.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from app.domain.exceptions import SensorReadError
from app.domain.watering import DeviceState

MOISTURE_CODES = ("humidity", "soil_humidity", "humidity_value", "moisture")
TEMPERATURE_CODES = ("temp_current", "temperature", "temp_value")
BATTERY_CODES = ("battery_percentage", "battery_state", "battery", "va_battery")

# Temperatures are reported in tenths of a degree
TEMPERATURE_SCALE = 10.0


def first_status_value(status: dict[str, Any], codes: Iterable[str]) -> Any:
    for code in codes:
        value = status.get(code)
        if value is not None:
            return value
    return None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


@dataclass(frozen=True)
class SoilStatus:
    device_id: str
    online: bool
    moisture: float | None
    temperature: float | None
    battery: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "online": self.online,
            "moisture": self.moisture,
            "temperature": self.temperature,
            "battery": self.battery,
        }


def parse_soil_status(state: DeviceState) -> SoilStatus:
    """Extract moisture, temperature and battery from a sensor's status map."""
    temperature = _as_float(first_status_value(state.status, TEMPERATURE_CODES))
    return SoilStatus(
        device_id=state.device_id,
        online=state.online,
        moisture=_as_float(first_status_value(state.status, MOISTURE_CODES)),
        temperature=temperature / TEMPERATURE_SCALE if temperature is not None else None,
        battery=first_status_value(state.status, BATTERY_CODES),
    )


def require_moisture(soil: SoilStatus) -> float:
    """Return the moisture percentage or raise :class:`SensorReadError`."""
    if soil.moisture is None:
        raise SensorReadError(
            f"Sensor {soil.device_id} reported no usable moisture value",
            detail={"device_id": soil.device_id},
        )
    if not 0.0 <= soil.moisture <= 100.0:
        raise SensorReadError(
            f"Sensor {soil.device_id} reported moisture out of range: {soil.moisture}",
            detail={"device_id": soil.device_id, "moisture": soil.moisture},
        )
    return soil.moisture
