"""Repository facades exposing typed accessors over low-level mixins.

Protocols are available for type-checking and dependency injection::

    from infrastructure.database.repositories.base import SessionStore
"""

from infrastructure.database.repositories.base import ReadingStore, SessionStore
from infrastructure.database.repositories.watering import (
    SensorReadingRepository,
    WateringSessionRepository,
    WeatherSnapshotRepository,
    ZoneRepository,
)

__all__ = [
    "ReadingStore",
    "SensorReadingRepository",
    "SessionStore",
    "WateringSessionRepository",
    "WeatherSnapshotRepository",
    "ZoneRepository",
]
