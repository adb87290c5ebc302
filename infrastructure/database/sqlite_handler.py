import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from flask import Flask

from infrastructure.database.ops.watering import WateringOperations

logger = logging.getLogger(__name__)


class SQLiteDatabaseHandler(WateringOperations):
    """Thread-safe SQLite handler decoupled from Flask globals."""

    def __init__(self, database_path: str) -> None:
        self._database_path = database_path
        self._local = threading.local()

        # Ensure the directory for the database file exists
        if database_path != ":memory:":
            db_path = Path(database_path)
            if not db_path.parent.exists():
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", db_path.parent)

    @property
    def database_path(self) -> str:
        return self._database_path

    # --- Lifecycle ------------------------------------------------------------
    def init_app(self, app: Flask | None = None) -> None:
        if app is not None:
            app.teardown_appcontext(self.close_db)
        self.create_tables()

    def get_db(self) -> sqlite3.Connection:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is None:
            try:
                connection = self._open_connection()
            except sqlite3.DatabaseError as exc:
                if self._is_corruption_error(exc):
                    logger.error("Database appears corrupt (%s). Recreating a fresh database.", exc)
                    self._quarantine_corrupt_db()
                    connection = self._open_connection()
                else:
                    raise
            self._local.connection = connection
        return connection

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, check_same_thread=False)
        try:
            connection.row_factory = sqlite3.Row
            self._configure_connection(connection)
            return connection
        except Exception:
            connection.close()
            raise

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        message = str(exc).lower()
        return (
            "database disk image is malformed" in message
            or "file is not a database" in message
            or "file is encrypted or is not a database" in message
        )

    def _quarantine_corrupt_db(self) -> Optional[Path]:
        db_path = Path(self._database_path)
        if not db_path.exists():
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        quarantine_dir = db_path.parent / "corrupt"
        quarantine_dir.mkdir(parents=True, exist_ok=True)

        suffix = db_path.suffix or ".db"
        quarantined = quarantine_dir / f"{db_path.stem}_corrupt_{timestamp}{suffix}"
        try:
            shutil.move(str(db_path), str(quarantined))
            for sidecar_suffix in ("-wal", "-shm"):
                sidecar = Path(f"{db_path}{sidecar_suffix}")
                if sidecar.exists():
                    shutil.move(str(sidecar), str(quarantine_dir / f"{sidecar.name}_{timestamp}"))
            logger.warning("Quarantined corrupt database to %s", quarantined)
            return quarantined
        except OSError as exc:
            logger.error("Failed to quarantine corrupt database %s: %s", db_path, exc)
            return None

    def _configure_connection(self, connection: sqlite3.Connection) -> None:
        """Configure SQLite connection.

        - WAL mode so the web app and the cron CLI can share the file
        - NORMAL synchronous: still safe with WAL
        - busy_timeout so overlapping scheduler invocations wait instead of failing
        """
        connection.execute("PRAGMA journal_mode=WAL")
        connection.execute("PRAGMA synchronous=NORMAL")
        connection.execute("PRAGMA busy_timeout=5000")
        connection.execute("PRAGMA temp_store=MEMORY")
        connection.commit()

    def close_db(self, _e: Optional[BaseException] = None) -> None:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            delattr(self._local, "connection")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_db()
        try:
            yield conn
        finally:
            conn.commit()

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Creates the necessary tables in the database if they do not already exist."""
        with self.connection() as db:
            # Zones: one logical watering area per controllable tap
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS zones (
                    id TEXT PRIMARY KEY,
                    device_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # Weather conditions captured when an automated session starts
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS weather_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    temperature REAL NOT NULL,
                    humidity INTEGER NOT NULL,
                    precipitation REAL NOT NULL,
                    weather_code INTEGER NOT NULL,
                    weather_description TEXT NOT NULL,
                    wind_speed REAL NOT NULL,
                    rainfall_last_24h REAL NOT NULL,
                    rainfall_last_7days REAL NOT NULL,
                    captured_at TEXT NOT NULL
                )
                """
            )
            # Watering sessions: append-only, closed by setting ended_at once
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS watering_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    zone_id TEXT NOT NULL REFERENCES zones(id),
                    device_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    duration_seconds INTEGER,
                    scheduled_end_at TEXT,
                    trigger TEXT NOT NULL CHECK (trigger IN ('manual', 'scheduled', 'automated')),
                    weather_snapshot_id INTEGER REFERENCES weather_snapshots(id),
                    end_reason TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # Soil readings: immutable moisture samples
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS soil_readings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    zone_id TEXT NOT NULL REFERENCES zones(id),
                    moisture_percent REAL NOT NULL,
                    temperature REAL,
                    captured_at TEXT NOT NULL
                )
                """
            )

            db.execute("CREATE INDEX IF NOT EXISTS idx_watering_sessions_zone ON watering_sessions(zone_id)")
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_watering_sessions_started ON watering_sessions(started_at DESC)"
            )
            db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_watering_sessions_due
                ON watering_sessions(scheduled_end_at) WHERE ended_at IS NULL
                """
            )
            # At most one open session per zone
            db.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_watering_sessions_open_zone
                ON watering_sessions(zone_id) WHERE ended_at IS NULL
                """
            )
            db.execute("CREATE INDEX IF NOT EXISTS idx_soil_readings_zone ON soil_readings(zone_id, captured_at DESC)")
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_weather_snapshots_captured ON weather_snapshots(captured_at DESC)"
            )
        logger.info("Database schema ready at %s", self._database_path)
