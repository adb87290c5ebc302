"""Read-only watering history: sessions, weather snapshots and statistics."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from app.utils.time import utc_now

if TYPE_CHECKING:
    from infrastructure.database.repositories.watering import (
        SensorReadingRepository,
        WateringSessionRepository,
        WeatherSnapshotRepository,
    )

logger = logging.getLogger(__name__)


class WateringHistoryService:
    def __init__(
        self,
        *,
        sessions: "WateringSessionRepository",
        weather_snapshots: "WeatherSnapshotRepository",
        readings: "SensorReadingRepository",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sessions = sessions
        self._snapshots = weather_snapshots
        self._readings = readings
        self._clock = clock

    def get_history(self, *, limit: int = 50, zone_id: str | None = None) -> dict[str, Any]:
        """Recent sessions (newest first), weather snapshots and 7-day stats."""
        limit = max(1, min(int(limit), 500))
        sessions = self._sessions.list_history(limit=limit, zone_id=zone_id)
        stats = self._sessions.stats(since=self._clock() - timedelta(days=7), zone_id=zone_id)
        logger.debug("History for zone=%s: %s sessions", zone_id or "*", len(sessions))
        return {
            "sessions": [session.to_dict() for session in sessions],
            "weather_snapshots": self._snapshots.list_recent(min(limit, 50)),
            "stats": stats,
        }

    def latest_reading(self, zone_id: str) -> dict[str, Any] | None:
        reading = self._readings.latest(zone_id)
        return reading.to_dict() if reading else None
