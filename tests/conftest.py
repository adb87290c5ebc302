"""
Shared test fixtures for the smart watering test suite.

Provides:
- In-memory SQLite database with all tables created
- Repository instances wired to the test database
- A fake device gateway, a fake weather provider and a settable clock
- Decision engine, lifecycle and scheduler wired to those fakes
- A Flask app/client built through create_app with the fakes injected

Usage:
    def test_example(scheduler, device_client, clock):
        result = scheduler.evaluate_zones()
        assert result.action == SchedulerAction.STARTED
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from app.config import ZoneConfig
from app.domain.exceptions import DeviceApiError
from app.domain.watering import DailyForecast, DeviceState, WeatherSignal
from app.services.application.decision_engine import (
    DecisionEngine,
    DeterministicStrategy,
    WateringPolicy,
)
from app.services.application.history_service import WateringHistoryService
from app.services.application.session_lifecycle_service import SessionLifecycleService
from app.services.application.watering_scheduler import WateringScheduler
from app.services.utilities.weather_service import recommend_watering
from infrastructure.database.repositories.watering import (
    SensorReadingRepository,
    WateringSessionRepository,
    WeatherSnapshotRepository,
    ZoneRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

# 11:00 in Europe/London (BST), inside the default 06-22 window
START_TIME = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


# ========================== Fakes ==========================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeDeviceClient:
    """In-memory stand-in for SignedDeviceClient.

    ``read_errors`` / ``command_errors`` map a device id to the exception the
    next calls for that device raise.
    """

    def __init__(self) -> None:
        self.devices: dict[str, DeviceState] = {}
        self.reads: list[str] = []
        self.commands: list[tuple[str, str, Any]] = []
        self.read_errors: dict[str, Exception] = {}
        self.command_errors: dict[str, Exception] = {}

    def add_device(self, device_id: str, *, online: bool = True, **status: Any) -> DeviceState:
        state = DeviceState(device_id=device_id, online=online, status=dict(status))
        self.devices[device_id] = state
        return state

    def read_status(self, device_id: str) -> DeviceState:
        self.reads.append(device_id)
        if device_id in self.read_errors:
            raise self.read_errors[device_id]
        try:
            return self.devices[device_id]
        except KeyError:
            raise DeviceApiError(f"Device {device_id} not found", code=2001, remote_message="device not exist") from None

    def send_command(self, device_id: str, code: str, value: Any) -> bool:
        if device_id in self.command_errors:
            raise self.command_errors[device_id]
        self.commands.append((device_id, code, value))
        if device_id in self.devices:
            self.devices[device_id].status[code] = value
        return True

    def turn_on(self, device_id: str) -> bool:
        return self.send_command(device_id, "switch", True)

    def turn_off(self, device_id: str) -> bool:
        return self.send_command(device_id, "switch", False)


class FakeWeatherService:
    """Returns a fixed signal, or raises ``error`` when set."""

    def __init__(self, signal: WeatherSignal):
        self.signal = signal
        self.error: Exception | None = None
        self.fetch_count = 0

    def fetch(self, *, use_cache: bool = True) -> WeatherSignal:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return self.signal

    def recommend(self, signal: WeatherSignal):
        return recommend_watering(signal.rainfall_last_7days, signal.forecast)


def make_weather_signal(rain_7d: float = 0.5, rain_next_days: float = 0.0, probability: int = 10) -> WeatherSignal:
    forecast = [
        DailyForecast(
            date=f"2024-06-0{day}",
            weather_code=1,
            weather_description="Mainly clear",
            temp_max=22.0,
            temp_min=12.0,
            precipitation_sum=rain_next_days,
            precipitation_probability=probability,
        )
        for day in (1, 2, 3)
    ]
    return WeatherSignal(
        temperature=19.5,
        humidity=55,
        precipitation=0.0,
        weather_code=1,
        weather_description="Mainly clear",
        wind_speed=8.0,
        rainfall_last_24h=0.0,
        rainfall_last_7days=rain_7d,
        forecast=forecast,
        fetched_at=START_TIME,
    )


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler():
    """In-memory SQLite database with all tables created.

    Each test gets a fresh database, no cross-test contamination.
    """
    handler = SQLiteDatabaseHandler(":memory:")
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def session_repo(db_handler):
    return WateringSessionRepository(db_handler)


@pytest.fixture()
def reading_repo(db_handler):
    return SensorReadingRepository(db_handler)


@pytest.fixture()
def snapshot_repo(db_handler):
    return WeatherSnapshotRepository(db_handler)


@pytest.fixture()
def zone_repo(db_handler):
    return ZoneRepository(db_handler)


# ========================== Fake Collaborators =============================


@pytest.fixture()
def clock():
    return FrozenClock(START_TIME)


@pytest.fixture()
def zone():
    return ZoneConfig(
        zone_id="garden",
        name="Garden",
        tap_device_id="tap-1",
        sensor_device_id="sensor-1",
        plant_description="Tomatoes and herbs",
    )


@pytest.fixture()
def device_client():
    """Online tap (off) and a sensor reading 30% moisture at 18.5°C."""
    client = FakeDeviceClient()
    client.add_device("tap-1", switch=False)
    client.add_device("sensor-1", humidity=30, temp_current=185, battery_percentage=80)
    return client


@pytest.fixture()
def signal_factory():
    return make_weather_signal


@pytest.fixture()
def weather_signal():
    return make_weather_signal()


@pytest.fixture()
def weather_service(weather_signal):
    return FakeWeatherService(weather_signal)


# ========================== Service Fixtures ===============================


@pytest.fixture()
def policy():
    return WateringPolicy()


@pytest.fixture()
def engine(policy, device_client, reading_repo, session_repo, weather_service):
    return DecisionEngine(
        policy=policy,
        strategies=[DeterministicStrategy(policy)],
        device_client=device_client,
        readings=reading_repo,
        sessions=session_repo,
        weather_service=weather_service,
        timezone="Europe/London",
    )


@pytest.fixture()
def lifecycle(session_repo, device_client, clock):
    return SessionLifecycleService(sessions=session_repo, device_client=device_client, clock=clock)


@pytest.fixture()
def scheduler(zone, engine, lifecycle, device_client, session_repo, snapshot_repo, clock):
    return WateringScheduler(
        zones=[zone],
        engine=engine,
        lifecycle=lifecycle,
        device_client=device_client,
        sessions=session_repo,
        weather_snapshots=snapshot_repo,
        timezone="Europe/London",
        clock=clock,
    )


@pytest.fixture()
def history_service(session_repo, snapshot_repo, reading_repo, clock):
    return WateringHistoryService(
        sessions=session_repo,
        weather_snapshots=snapshot_repo,
        readings=reading_repo,
        clock=clock,
    )


# ========================== Flask Fixtures =================================

CRON_SECRET = "test-cron-secret"


@pytest.fixture()
def app(tmp_path, zone, device_client, weather_service, clock):
    """Flask app with a file-backed test database and the fakes injected."""
    from app import create_app

    flask_app = create_app(
        config_overrides={
            "environment": "testing",
            "database_path": str(tmp_path / "smartwater.db"),
            "audit_log_path": str(tmp_path / "audit.log"),
            "zones": [zone],
            "cron_secret": CRON_SECRET,
            "device_client_id": "test-client",
            "device_client_secret": "test-secret",
            "llm_provider": "none",
            "timezone": "Europe/London",
        },
        container_overrides={
            "clock": clock,
            "device_client": device_client,
            "weather_service": weather_service,
        },
    )
    flask_app.config["TESTING"] = True
    yield flask_app
    flask_app.config["CONTAINER"].shutdown()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
