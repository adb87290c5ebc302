"""Database operations for zones, watering sessions, soil readings and weather snapshots."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any

from app.domain.exceptions import ConflictError, RepositoryError
from app.utils.time import utc_now

logger = logging.getLogger(__name__)


def db_timestamp(value: datetime | None = None) -> str:
    """UTC ISO-8601 with second precision so stored values sort lexically."""
    value = value or utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


_SESSION_SELECT = """
    SELECT s.*, z.name AS zone_name
    FROM watering_sessions s
    LEFT JOIN zones z ON z.id = s.zone_id
"""


class WateringOperations:
    """Database operations for the watering engine.

    Mixed into ``SQLiteDatabaseHandler``; relies on ``get_db()``.
    Failures are raised as :class:`RepositoryError` so callers see them.
    """

    # ========== Zones ==========

    def upsert_zone(
        self,
        zone_id: str,
        device_id: str,
        name: str,
        description: str | None = None,
    ) -> None:
        try:
            db = self.get_db()
            self._upsert_zone(db, zone_id, device_id, name, description)
            db.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to upsert zone %s: %s", zone_id, exc)
            raise RepositoryError(f"Failed to upsert zone {zone_id}") from exc

    def _upsert_zone(
        self,
        db: sqlite3.Connection,
        zone_id: str,
        device_id: str,
        name: str,
        description: str | None,
    ) -> None:
        db.execute(
            """
            INSERT INTO zones (id, device_id, name, description, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                device_id = excluded.device_id,
                name = excluded.name,
                description = COALESCE(excluded.description, zones.description)
            """,
            (zone_id, device_id, name, description, db_timestamp()),
        )

    def list_zones(self) -> list[dict[str, Any]]:
        try:
            rows = self.get_db().execute("SELECT * FROM zones ORDER BY id").fetchall()
            return [dict(row) for row in rows]
        except sqlite3.Error as exc:
            logger.error("Failed to list zones: %s", exc)
            raise RepositoryError("Failed to list zones") from exc

    # ========== Watering sessions ==========

    def insert_watering_session(
        self,
        *,
        zone_id: str,
        zone_name: str,
        device_id: str,
        trigger: str,
        started_at: datetime,
        scheduled_end_at: datetime | None = None,
        weather_snapshot_id: int | None = None,
    ) -> int:
        """Insert an open session, upserting its zone in the same transaction.

        Raises ConflictError when the zone already has an open session.
        """
        db = self.get_db()
        try:
            self._upsert_zone(db, zone_id, device_id, zone_name, None)
            cur = db.execute(
                """
                INSERT INTO watering_sessions (
                    zone_id, device_id, started_at, scheduled_end_at,
                    trigger, weather_snapshot_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    zone_id,
                    device_id,
                    db_timestamp(started_at),
                    db_timestamp(scheduled_end_at) if scheduled_end_at else None,
                    trigger,
                    weather_snapshot_id,
                    db_timestamp(),
                ),
            )
            db.commit()
            logger.info("Created watering session %s for zone %s (%s)", cur.lastrowid, zone_id, trigger)
            return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            db.rollback()
            logger.warning("Open session already exists for zone %s: %s", zone_id, exc)
            raise ConflictError(
                f"Zone {zone_id} already has an active session",
                detail={"zone_id": zone_id},
            ) from exc
        except sqlite3.Error as exc:
            db.rollback()
            logger.error("Failed to create watering session for zone %s: %s", zone_id, exc)
            raise RepositoryError(f"Failed to create watering session for zone {zone_id}") from exc

    def close_watering_session(
        self,
        session_id: int,
        *,
        ended_at: datetime,
        duration_seconds: int,
        end_reason: str,
    ) -> bool:
        """Close an open session. Returns False if it was already closed."""
        try:
            db = self.get_db()
            cur = db.execute(
                """
                UPDATE watering_sessions
                SET ended_at = ?, duration_seconds = ?, end_reason = ?
                WHERE id = ? AND ended_at IS NULL
                """,
                (db_timestamp(ended_at), duration_seconds, end_reason, session_id),
            )
            db.commit()
            return cur.rowcount == 1
        except sqlite3.Error as exc:
            logger.error("Failed to close watering session %s: %s", session_id, exc)
            raise RepositoryError(f"Failed to close watering session {session_id}") from exc

    def get_watering_session(self, session_id: int) -> dict[str, Any] | None:
        return self._fetch_one(f"{_SESSION_SELECT} WHERE s.id = ?", (session_id,))

    def get_open_watering_session(self, zone_id: str) -> dict[str, Any] | None:
        return self._fetch_one(
            f"{_SESSION_SELECT} WHERE s.zone_id = ? AND s.ended_at IS NULL",
            (zone_id,),
        )

    def list_open_watering_sessions(self, zone_id: str | None = None) -> list[dict[str, Any]]:
        if zone_id is None:
            return self._fetch_all(f"{_SESSION_SELECT} WHERE s.ended_at IS NULL ORDER BY s.started_at", ())
        return self._fetch_all(
            f"{_SESSION_SELECT} WHERE s.ended_at IS NULL AND s.zone_id = ? ORDER BY s.started_at",
            (zone_id,),
        )

    def list_due_watering_sessions(self, now: datetime) -> list[dict[str, Any]]:
        """Open sessions whose scheduled end is at or before *now*."""
        return self._fetch_all(
            f"""{_SESSION_SELECT}
            WHERE s.ended_at IS NULL
              AND s.scheduled_end_at IS NOT NULL
              AND s.scheduled_end_at <= ?
            ORDER BY s.scheduled_end_at
            """,
            (db_timestamp(now),),
        )

    def list_stale_watering_sessions(
        self,
        started_before: datetime,
        zone_id: str | None = None,
    ) -> list[dict[str, Any]]:
        query = f"{_SESSION_SELECT} WHERE s.ended_at IS NULL AND s.started_at < ?"
        params: list[Any] = [db_timestamp(started_before)]
        if zone_id is not None:
            query += " AND s.zone_id = ?"
            params.append(zone_id)
        return self._fetch_all(query + " ORDER BY s.started_at", tuple(params))

    def list_watering_sessions(
        self,
        *,
        limit: int = 50,
        zone_id: str | None = None,
        started_since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if zone_id is not None:
            clauses.append("s.zone_id = ?")
            params.append(zone_id)
        if started_since is not None:
            clauses.append("s.started_at >= ?")
            params.append(db_timestamp(started_since))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))
        return self._fetch_all(f"{_SESSION_SELECT}{where} ORDER BY s.started_at DESC, s.id DESC LIMIT ?", tuple(params))

    def count_watering_sessions_since(self, zone_id: str, since: datetime) -> int:
        try:
            row = self.get_db().execute(
                "SELECT COUNT(*) FROM watering_sessions WHERE zone_id = ? AND started_at >= ?",
                (zone_id, db_timestamp(since)),
            ).fetchone()
            return int(row[0])
        except sqlite3.Error as exc:
            logger.error("Failed to count sessions for zone %s: %s", zone_id, exc)
            raise RepositoryError(f"Failed to count sessions for zone {zone_id}") from exc

    def get_watering_stats(self, *, since: datetime, zone_id: str | None = None) -> dict[str, Any]:
        """Aggregate totals for history views; ``since`` bounds ``events_since``."""
        zone_clause = " WHERE zone_id = ?" if zone_id is not None else ""
        zone_params: tuple[Any, ...] = (zone_id,) if zone_id is not None else ()
        try:
            db = self.get_db()
            row = db.execute(
                f"""
                SELECT COUNT(*) AS total_events,
                       COALESCE(SUM(duration_seconds), 0) AS total_duration_seconds,
                       AVG(duration_seconds) AS average_duration_seconds,
                       MAX(started_at) AS last_watered_at
                FROM watering_sessions{zone_clause}
                """,
                zone_params,
            ).fetchone()
            since_clause = " AND zone_id = ?" if zone_id is not None else ""
            recent = db.execute(
                f"SELECT COUNT(*) FROM watering_sessions WHERE started_at >= ?{since_clause}",
                (db_timestamp(since), *zone_params),
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Failed to compute watering stats: %s", exc)
            raise RepositoryError("Failed to compute watering stats") from exc

        stats = dict(row)
        stats["events_since"] = int(recent[0])
        return stats

    # ========== Soil readings ==========

    def insert_soil_reading(
        self,
        *,
        zone_id: str,
        moisture_percent: float,
        temperature: float | None,
        captured_at: datetime,
    ) -> int:
        try:
            db = self.get_db()
            cur = db.execute(
                """
                INSERT INTO soil_readings (zone_id, moisture_percent, temperature, captured_at)
                VALUES (?, ?, ?, ?)
                """,
                (zone_id, moisture_percent, temperature, db_timestamp(captured_at)),
            )
            db.commit()
            return int(cur.lastrowid)
        except sqlite3.Error as exc:
            logger.error("Failed to store soil reading for zone %s: %s", zone_id, exc)
            raise RepositoryError(f"Failed to store soil reading for zone {zone_id}") from exc

    def get_latest_soil_reading(self, zone_id: str) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT * FROM soil_readings WHERE zone_id = ? ORDER BY captured_at DESC, id DESC LIMIT 1",
            (zone_id,),
        )

    def list_soil_readings(self, zone_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM soil_readings WHERE zone_id = ? ORDER BY captured_at DESC, id DESC LIMIT ?",
            (zone_id, int(limit)),
        )

    # ========== Weather snapshots ==========

    def insert_weather_snapshot(
        self,
        *,
        temperature: float,
        humidity: int,
        precipitation: float,
        weather_code: int,
        weather_description: str,
        wind_speed: float,
        rainfall_last_24h: float,
        rainfall_last_7days: float,
        captured_at: datetime,
    ) -> int:
        try:
            db = self.get_db()
            cur = db.execute(
                """
                INSERT INTO weather_snapshots (
                    temperature, humidity, precipitation, weather_code,
                    weather_description, wind_speed, rainfall_last_24h,
                    rainfall_last_7days, captured_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    temperature,
                    humidity,
                    precipitation,
                    weather_code,
                    weather_description,
                    wind_speed,
                    rainfall_last_24h,
                    rainfall_last_7days,
                    db_timestamp(captured_at),
                ),
            )
            db.commit()
            return int(cur.lastrowid)
        except sqlite3.Error as exc:
            logger.error("Failed to store weather snapshot: %s", exc)
            raise RepositoryError("Failed to store weather snapshot") from exc

    def list_weather_snapshots(self, limit: int = 10) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM weather_snapshots ORDER BY captured_at DESC, id DESC LIMIT ?",
            (int(limit),),
        )

    # ========== Helpers ==========

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        try:
            row = self.get_db().execute(query, params).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Query failed: %s", exc)
            raise RepositoryError("Database read failed") from exc

    def _fetch_all(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        try:
            return [dict(row) for row in self.get_db().execute(query, params).fetchall()]
        except sqlite3.Error as exc:
            logger.error("Query failed: %s", exc)
            raise RepositoryError("Database read failed") from exc
