"""
Watering Domain Objects
=======================
Dataclasses for watering sessions, soil readings, device state, weather
signals and the per-cycle watering decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.enums import DecisionConfidence, SessionState, TriggerKind
from app.utils.time import coerce_datetime


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class WateringSession:
    """One contiguous interval during which a zone's tap was on.

    A session is *active* while ``ended_at`` is None. Sessions are never
    deleted; closing sets ``ended_at`` and ``duration_seconds`` once.
    """

    id: int
    zone_id: str
    device_id: str
    started_at: datetime
    trigger: TriggerKind
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    scheduled_end_at: datetime | None = None
    weather_snapshot_id: int | None = None
    end_reason: str | None = None
    zone_name: str | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def is_due(self, now: datetime) -> bool:
        """True when the session is open and its scheduled end has passed."""
        return self.is_active and self.scheduled_end_at is not None and self.scheduled_end_at <= now

    def age_hours(self, now: datetime) -> float:
        return (now - self.started_at).total_seconds() / 3600.0

    @classmethod
    def from_row(cls, row: Any) -> "WateringSession":
        data = dict(row)
        keys = data.keys()
        return cls(
            id=int(data["id"]),
            zone_id=data["zone_id"],
            device_id=data["device_id"],
            started_at=coerce_datetime(data["started_at"]),
            trigger=TriggerKind(data["trigger"]),
            ended_at=coerce_datetime(data.get("ended_at")),
            duration_seconds=data.get("duration_seconds"),
            scheduled_end_at=coerce_datetime(data.get("scheduled_end_at")),
            weather_snapshot_id=data.get("weather_snapshot_id"),
            end_reason=data.get("end_reason"),
            zone_name=data["zone_name"] if "zone_name" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "device_id": self.device_id,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_seconds": self.duration_seconds,
            "scheduled_end_at": _iso(self.scheduled_end_at),
            "trigger": str(self.trigger),
            "weather_snapshot_id": self.weather_snapshot_id,
            "end_reason": self.end_reason,
            "active": self.is_active,
        }


@dataclass(frozen=True)
class ZoneState:
    """Idle/Active view of a zone, derived from its open session (if any)."""

    zone_id: str
    active_session: WateringSession | None = None

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self.active_session else SessionState.IDLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "state": str(self.state),
            "active_session": self.active_session.to_dict() if self.active_session else None,
        }


@dataclass(frozen=True)
class SensorReading:
    """Soil moisture sample. Immutable once written."""

    zone_id: str
    moisture_percent: float
    captured_at: datetime
    temperature: float | None = None
    id: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> "SensorReading":
        data = dict(row)
        return cls(
            id=data.get("id"),
            zone_id=data["zone_id"],
            moisture_percent=float(data["moisture_percent"]),
            temperature=data.get("temperature"),
            captured_at=coerce_datetime(data["captured_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "moisture_percent": self.moisture_percent,
            "temperature": self.temperature,
            "captured_at": _iso(self.captured_at),
        }


@dataclass
class DeviceState:
    """Parsed device status as returned by the gateway."""

    device_id: str
    online: bool
    status: dict[str, Any] = field(default_factory=dict)
    name: str | None = None

    @property
    def is_on(self) -> bool | None:
        value = self.status.get("switch", self.status.get("switch_1"))
        return None if value is None else bool(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "online": self.online,
            "is_on": self.is_on,
            "status": dict(self.status),
        }


@dataclass
class DailyForecast:
    date: str
    weather_code: int
    weather_description: str
    temp_max: float
    temp_min: float
    precipitation_sum: float
    precipitation_probability: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "weather_code": self.weather_code,
            "weather_description": self.weather_description,
            "temp_max": self.temp_max,
            "temp_min": self.temp_min,
            "precipitation_sum": self.precipitation_sum,
            "precipitation_probability": self.precipitation_probability,
        }


@dataclass
class WeatherSignal:
    """Current conditions, recent rainfall and the daily forecast."""

    temperature: float
    humidity: int
    precipitation: float
    weather_code: int
    weather_description: str
    wind_speed: float
    rainfall_last_24h: float
    rainfall_last_7days: float
    forecast: list[DailyForecast] = field(default_factory=list)
    fetched_at: datetime | None = None

    def upcoming(self, days: int = 3) -> list[DailyForecast]:
        return self.forecast[:days]

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": {
                "temperature": self.temperature,
                "humidity": self.humidity,
                "precipitation": self.precipitation,
                "weather_code": self.weather_code,
                "weather_description": self.weather_description,
                "wind_speed": self.wind_speed,
            },
            "recent_rainfall": {
                "last_24h": self.rainfall_last_24h,
                "last_7days": self.rainfall_last_7days,
            },
            "forecast": [day.to_dict() for day in self.forecast],
            "fetched_at": _iso(self.fetched_at),
        }


@dataclass(frozen=True)
class WateringRecommendation:
    """Rule-based recommendation derived from a weather signal alone."""

    should_water: bool
    reason: str
    urgency: str

    def to_dict(self) -> dict[str, Any]:
        return {"should_water": self.should_water, "reason": self.reason, "urgency": self.urgency}


@dataclass(frozen=True)
class WateringDecision:
    """Output of one decision cycle. Never persisted on its own."""

    should_water: bool
    duration_minutes: int
    reason: str
    confidence: DecisionConfidence
    strategy: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_water": self.should_water,
            "duration_minutes": self.duration_minutes,
            "reason": self.reason,
            "confidence": str(self.confidence),
            "strategy": self.strategy,
        }
