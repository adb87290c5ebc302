from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from app.domain.exceptions import (
    DeviceTransportError,
    NotFoundError,
    ValidationError,
)
from app.enums import SessionState, TriggerKind
from app.services.application.session_lifecycle_service import (
    ALREADY_ACTIVE,
    ALREADY_CLOSED,
    IDLE,
    STARTED,
    STOPPED,
    SessionLifecycleService,
)


def test_manual_start_records_open_session(lifecycle, zone, device_client, clock):
    result = lifecycle.start(zone, TriggerKind.MANUAL)

    assert result.outcome == STARTED
    assert result.changed
    assert device_client.commands == [("tap-1", "switch", True)]
    session = result.session
    assert session.started_at == clock()
    assert session.scheduled_end_at is None
    assert session.trigger is TriggerKind.MANUAL
    assert lifecycle.state("garden").state is SessionState.ACTIVE


def test_scheduled_start_sets_end_time(lifecycle, zone, clock):
    result = lifecycle.start(zone, TriggerKind.SCHEDULED, 15)
    assert result.session.scheduled_end_at == clock() + timedelta(minutes=15)


@pytest.mark.parametrize("trigger, minutes", [(TriggerKind.AUTOMATED, None), (TriggerKind.SCHEDULED, 0), (TriggerKind.MANUAL, -1)])
def test_start_rejects_missing_or_bad_duration(lifecycle, zone, device_client, trigger, minutes):
    with pytest.raises(ValidationError):
        lifecycle.start(zone, trigger, minutes)
    assert device_client.commands == []


def test_start_when_active_does_not_touch_device(lifecycle, zone, device_client):
    first = lifecycle.start(zone, TriggerKind.MANUAL)
    second = lifecycle.start(zone, TriggerKind.AUTOMATED, 30)

    assert second.outcome == ALREADY_ACTIVE
    assert not second.changed
    assert second.session.id == first.session.id
    assert len(device_client.commands) == 1


def test_start_device_failure_records_nothing(lifecycle, zone, device_client, session_repo):
    device_client.command_errors["tap-1"] = DeviceTransportError("timeout")
    with pytest.raises(DeviceTransportError):
        lifecycle.start(zone, TriggerKind.MANUAL)
    assert session_repo.get_active("garden") is None


def test_concurrent_start_reports_winner(lifecycle, zone, session_repo, device_client, clock):
    winner = session_repo.create(
        zone_id="garden",
        zone_name="Garden",
        device_id="tap-1",
        trigger=TriggerKind.AUTOMATED,
        started_at=clock(),
        scheduled_end_at=clock() + timedelta(minutes=30),
    )
    # The pre-check misses the winner, the insert then conflicts
    with patch.object(session_repo, "get_active", side_effect=[None, winner]):
        result = lifecycle.start(zone, TriggerKind.MANUAL)

    assert result.outcome == ALREADY_ACTIVE
    assert result.session.id == winner.id
    assert len(session_repo.list_active("garden")) == 1
    assert device_client.commands == [("tap-1", "switch", True)]


def test_stop_closes_with_measured_duration(lifecycle, zone, device_client, clock):
    session = lifecycle.start(zone, TriggerKind.MANUAL).session
    clock.advance(minutes=10, seconds=20)

    result = lifecycle.stop(session.id)

    assert result.outcome == STOPPED
    assert result.session.duration_seconds == 620
    assert result.session.ended_at == clock()
    assert result.session.end_reason == "manual"
    assert device_client.commands[-1] == ("tap-1", "switch", False)
    assert lifecycle.state("garden").state is SessionState.IDLE


def test_stop_twice_is_already_closed(lifecycle, zone, device_client, clock):
    session = lifecycle.start(zone, TriggerKind.MANUAL).session
    clock.advance(minutes=5)
    lifecycle.stop(session.id)

    result = lifecycle.stop(session.id)
    assert result.outcome == ALREADY_CLOSED
    assert [c[2] for c in device_client.commands] == [True, False]


def test_stop_unknown_session(lifecycle):
    with pytest.raises(NotFoundError):
        lifecycle.stop(999)


def test_stop_device_failure_keeps_session_open(lifecycle, zone, device_client, session_repo, clock):
    session = lifecycle.start(zone, TriggerKind.MANUAL).session
    device_client.command_errors["tap-1"] = DeviceTransportError("timeout")
    clock.advance(minutes=5)

    with pytest.raises(DeviceTransportError):
        lifecycle.stop(session.id)
    assert session_repo.get_active("garden").id == session.id


def test_stop_active_when_idle(lifecycle, device_client):
    result = lifecycle.stop_active("garden")
    assert result.outcome == IDLE
    assert result.session is None
    assert device_client.commands == []


def test_reconcile_closes_stale_with_estimate(lifecycle, zone, device_client, clock):
    started = clock()
    session = lifecycle.start(zone, TriggerKind.MANUAL).session
    clock.advance(hours=5)

    closed = lifecycle.reconcile_stale(max_age_hours=4)

    assert [s.id for s in closed] == [session.id]
    assert closed[0].duration_seconds == 1800
    assert closed[0].ended_at == started + timedelta(minutes=30)
    assert closed[0].end_reason == "reconciled"
    # No device call for reconciliation
    assert device_client.commands == [("tap-1", "switch", True)]


def test_reconcile_estimate_never_passes_now(session_repo, device_client, zone, clock):
    lifecycle = SessionLifecycleService(sessions=session_repo, device_client=device_client, clock=clock)
    lifecycle.start(zone, TriggerKind.MANUAL)
    clock.advance(minutes=10)

    closed = lifecycle.reconcile_stale(max_age_hours=0.1)
    assert closed[0].duration_seconds == 600
    assert closed[0].ended_at == clock()


def test_reconcile_leaves_fresh_and_other_zones(lifecycle, zone, clock):
    lifecycle.start(zone, TriggerKind.MANUAL)
    clock.advance(hours=1)
    assert lifecycle.reconcile_stale(max_age_hours=4) == []

    clock.advance(hours=4)
    assert lifecycle.reconcile_stale("beds", max_age_hours=4) == []
    assert len(lifecycle.reconcile_stale("garden", max_age_hours=4)) == 1


def test_reconcile_after_stop_leaves_session_untouched(lifecycle, zone, session_repo, device_client, clock):
    session = lifecycle.start(zone, TriggerKind.MANUAL).session
    clock.advance(minutes=12)
    stopped_at = clock()
    lifecycle.stop(session.id)
    clock.advance(hours=6)

    assert lifecycle.reconcile_stale(max_age_hours=4) == []

    stored = session_repo.get(session.id)
    assert stored.ended_at == stopped_at
    assert stored.duration_seconds == 720
    assert stored.end_reason == "manual"
    assert len(device_client.commands) == 2


def test_transitions_are_audited(session_repo, device_client, zone, clock):
    audit = Mock()
    lifecycle = SessionLifecycleService(sessions=session_repo, device_client=device_client, audit=audit, clock=clock)

    session = lifecycle.start(zone, TriggerKind.MANUAL, actor="api").session
    lifecycle.stop(session.id, actor="api")

    commands = [call.args for call in audit.device_command.call_args_list]
    assert commands[0][:5] == ("api", "tap-1", "switch", True, "success")
    assert commands[1][:5] == ("api", "tap-1", "switch", False, "success")
    transitions = [call.args[2] for call in audit.session_transition.call_args_list]
    assert transitions == ["start", "stop"]
