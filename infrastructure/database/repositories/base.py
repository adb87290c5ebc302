"""
Repository Protocols
====================

Contracts the application services depend on. Uses ``typing.Protocol``
(structural subtyping) so the SQLite repositories satisfy them without
inheritance, and tests can pass in-memory fakes.

Usage in service type hints::

    from infrastructure.database.repositories.base import SessionStore


    class MyService:
        def __init__(self, sessions: SessionStore) -> None: ...
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from app.domain.watering import SensorReading, WateringSession
    from app.enums import TriggerKind


@runtime_checkable
class SessionStore(Protocol):
    """Create / read / close watering sessions."""

    def create(
        self,
        *,
        zone_id: str,
        zone_name: str,
        device_id: str,
        trigger: "TriggerKind",
        started_at: datetime,
        scheduled_end_at: datetime | None = None,
        weather_snapshot_id: int | None = None,
    ) -> "WateringSession": ...

    def get(self, session_id: int) -> "WateringSession | None": ...

    def get_active(self, zone_id: str) -> "WateringSession | None": ...

    def list_due(self, now: datetime) -> list["WateringSession"]: ...

    def list_stale(self, started_before: datetime, zone_id: str | None = None) -> list["WateringSession"]: ...

    def close(self, session_id: int, *, ended_at: datetime, duration_seconds: int, end_reason: str) -> bool: ...

    def list_recent(self, zone_id: str, *, since: datetime, limit: int) -> list["WateringSession"]: ...

    def count_started_since(self, zone_id: str, since: datetime) -> int: ...


@runtime_checkable
class ReadingStore(Protocol):
    """Append and query soil readings."""

    def add(
        self,
        zone_id: str,
        moisture_percent: float,
        temperature: float | None,
        captured_at: datetime,
    ) -> "SensorReading": ...

    def latest(self, zone_id: str) -> "SensorReading | None": ...
