"""Repositories for watering sessions, soil readings, weather snapshots and zones."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.domain.exceptions import RepositoryError
from app.domain.watering import SensorReading, WateringSession, WeatherSignal
from app.enums import TriggerKind
from app.utils.time import coerce_datetime

if TYPE_CHECKING:
    from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler


class WateringSessionRepository:
    """Session store backed by the ``watering_sessions`` table."""

    def __init__(self, db_handler: "SQLiteDatabaseHandler"):
        self._db = db_handler

    def create(
        self,
        *,
        zone_id: str,
        zone_name: str,
        device_id: str,
        trigger: TriggerKind,
        started_at: datetime,
        scheduled_end_at: datetime | None = None,
        weather_snapshot_id: int | None = None,
    ) -> WateringSession:
        """Insert an open session. Raises ConflictError if the zone is already active."""
        session_id = self._db.insert_watering_session(
            zone_id=zone_id,
            zone_name=zone_name,
            device_id=device_id,
            trigger=str(trigger),
            started_at=started_at,
            scheduled_end_at=scheduled_end_at,
            weather_snapshot_id=weather_snapshot_id,
        )
        session = self.get(session_id)
        if session is None:
            raise RepositoryError(f"Watering session {session_id} not found after insert")
        return session

    def get(self, session_id: int) -> WateringSession | None:
        row = self._db.get_watering_session(session_id)
        return WateringSession.from_row(row) if row else None

    def get_active(self, zone_id: str) -> WateringSession | None:
        row = self._db.get_open_watering_session(zone_id)
        return WateringSession.from_row(row) if row else None

    def list_active(self, zone_id: str | None = None) -> list[WateringSession]:
        return [WateringSession.from_row(r) for r in self._db.list_open_watering_sessions(zone_id)]

    def list_due(self, now: datetime) -> list[WateringSession]:
        return [WateringSession.from_row(r) for r in self._db.list_due_watering_sessions(now)]

    def list_stale(self, started_before: datetime, zone_id: str | None = None) -> list[WateringSession]:
        rows = self._db.list_stale_watering_sessions(started_before, zone_id)
        return [WateringSession.from_row(r) for r in rows]

    def close(self, session_id: int, *, ended_at: datetime, duration_seconds: int, end_reason: str) -> bool:
        """Close an open session; False when it was already closed."""
        return self._db.close_watering_session(
            session_id,
            ended_at=ended_at,
            duration_seconds=duration_seconds,
            end_reason=end_reason,
        )

    def list_recent(self, zone_id: str, *, since: datetime, limit: int) -> list[WateringSession]:
        rows = self._db.list_watering_sessions(limit=limit, zone_id=zone_id, started_since=since)
        return [WateringSession.from_row(r) for r in rows]

    def list_history(self, *, limit: int = 50, zone_id: str | None = None) -> list[WateringSession]:
        return [WateringSession.from_row(r) for r in self._db.list_watering_sessions(limit=limit, zone_id=zone_id)]

    def count_started_since(self, zone_id: str, since: datetime) -> int:
        return self._db.count_watering_sessions_since(zone_id, since)

    def stats(self, *, since: datetime, zone_id: str | None = None) -> dict[str, Any]:
        raw = self._db.get_watering_stats(since=since, zone_id=zone_id)
        average = raw.get("average_duration_seconds")
        last = coerce_datetime(raw.get("last_watered_at"))
        return {
            "total_events": int(raw.get("total_events") or 0),
            "total_duration_seconds": int(raw.get("total_duration_seconds") or 0),
            "average_duration_seconds": round(average) if average is not None else 0,
            "events_last_7_days": int(raw.get("events_since") or 0),
            "last_watered_at": last.isoformat() if last else None,
        }


class SensorReadingRepository:
    """Append-only store for soil readings."""

    def __init__(self, db_handler: "SQLiteDatabaseHandler"):
        self._db = db_handler

    def add(
        self,
        zone_id: str,
        moisture_percent: float,
        temperature: float | None,
        captured_at: datetime,
    ) -> SensorReading:
        reading_id = self._db.insert_soil_reading(
            zone_id=zone_id,
            moisture_percent=moisture_percent,
            temperature=temperature,
            captured_at=captured_at,
        )
        return SensorReading(
            id=reading_id,
            zone_id=zone_id,
            moisture_percent=moisture_percent,
            temperature=temperature,
            captured_at=captured_at,
        )

    def latest(self, zone_id: str) -> SensorReading | None:
        row = self._db.get_latest_soil_reading(zone_id)
        return SensorReading.from_row(row) if row else None

    def list_for_zone(self, zone_id: str, limit: int = 100) -> list[SensorReading]:
        return [SensorReading.from_row(r) for r in self._db.list_soil_readings(zone_id, limit)]


class WeatherSnapshotRepository:
    """Weather conditions captured alongside automated sessions."""

    def __init__(self, db_handler: "SQLiteDatabaseHandler"):
        self._db = db_handler

    def capture(self, signal: WeatherSignal, captured_at: datetime) -> int:
        return self._db.insert_weather_snapshot(
            temperature=signal.temperature,
            humidity=signal.humidity,
            precipitation=signal.precipitation,
            weather_code=signal.weather_code,
            weather_description=signal.weather_description,
            wind_speed=signal.wind_speed,
            rainfall_last_24h=signal.rainfall_last_24h,
            rainfall_last_7days=signal.rainfall_last_7days,
            captured_at=captured_at,
        )

    def list_recent(self, limit: int = 10) -> list[dict[str, Any]]:
        return self._db.list_weather_snapshots(limit)


class ZoneRepository:
    """Zones known to the store (upserted whenever a session starts)."""

    def __init__(self, db_handler: "SQLiteDatabaseHandler"):
        self._db = db_handler

    def upsert(self, zone_id: str, device_id: str, name: str, description: str | None = None) -> None:
        self._db.upsert_zone(zone_id, device_id, name, description)

    def list_all(self) -> list[dict[str, Any]]:
        return self._db.list_zones()
