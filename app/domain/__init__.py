"""
Domain Package
==============
Value objects for the watering engine plus the pure time-window gate.
"""

from .time_window import is_within_window
from .watering import (
    DailyForecast,
    DeviceState,
    SensorReading,
    WateringDecision,
    WateringRecommendation,
    WateringSession,
    WeatherSignal,
    ZoneState,
)

__all__ = [
    "DailyForecast",
    "DeviceState",
    "SensorReading",
    "WateringDecision",
    "WateringRecommendation",
    "WateringSession",
    "WeatherSignal",
    "ZoneState",
    "is_within_window",
]
