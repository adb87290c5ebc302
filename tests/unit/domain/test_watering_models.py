from datetime import datetime, timedelta, timezone

from app.domain.watering import DeviceState, WateringSession, ZoneState
from app.enums import SessionState, TriggerKind

STARTED = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def make_session(**overrides):
    values = {
        "id": 1,
        "zone_id": "garden",
        "device_id": "tap-1",
        "started_at": STARTED,
        "trigger": TriggerKind.AUTOMATED,
        "scheduled_end_at": STARTED + timedelta(minutes=30),
    }
    values.update(overrides)
    return WateringSession(**values)


def test_session_is_due_only_when_open_and_past_end():
    session = make_session()
    assert not session.is_due(STARTED + timedelta(minutes=29))
    assert session.is_due(STARTED + timedelta(minutes=30))

    closed = make_session(ended_at=STARTED + timedelta(minutes=30), duration_seconds=1800)
    assert not closed.is_active
    assert not closed.is_due(STARTED + timedelta(hours=1))

    manual = make_session(trigger=TriggerKind.MANUAL, scheduled_end_at=None)
    assert not manual.is_due(STARTED + timedelta(days=1))


def test_session_from_row_parses_stored_strings():
    session = WateringSession.from_row(
        {
            "id": 4,
            "zone_id": "garden",
            "device_id": "tap-1",
            "started_at": "2024-06-01T10:00:00+00:00",
            "ended_at": None,
            "duration_seconds": None,
            "scheduled_end_at": "2024-06-01T10:30:00+00:00",
            "trigger": "scheduled",
            "weather_snapshot_id": None,
            "end_reason": None,
            "zone_name": "Garden",
        }
    )
    assert session.trigger is TriggerKind.SCHEDULED
    assert session.started_at == STARTED
    assert session.zone_name == "Garden"
    assert session.to_dict()["active"] is True


def test_zone_state_derives_from_active_session():
    assert ZoneState("garden").state is SessionState.IDLE
    state = ZoneState("garden", make_session())
    assert state.state is SessionState.ACTIVE
    assert state.to_dict()["state"] == "active"


def test_device_state_switch_value():
    assert DeviceState("tap-1", True, {"switch_1": True}).is_on is True
    assert DeviceState("tap-1", True, {"switch": False}).is_on is False
    assert DeviceState("tap-1", True, {}).is_on is None


def test_trigger_scheduled_end():
    assert TriggerKind.AUTOMATED.has_scheduled_end
    assert TriggerKind.SCHEDULED.has_scheduled_end
    assert not TriggerKind.MANUAL.has_scheduled_end
