import pytest
from pydantic import ValidationError

from app.schemas import WateringAction, WateringControlRequest
from app.security.cron_auth import is_authorized


def test_action_is_case_insensitive():
    body = WateringControlRequest(action=" START ", duration_minutes=20)
    assert body.action is WateringAction.START
    assert body.duration_minutes == 20


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"action": "pause"},
        {"action": "start", "duration_minutes": 0},
        {"action": "start", "duration_minutes": 500},
        {"action": "stop", "duration_minutes": 10},
        {"action": "start", "zone": "garden"},
    ],
)
def test_invalid_control_requests(payload):
    with pytest.raises(ValidationError):
        WateringControlRequest(**payload)


def test_cron_authorization():
    assert is_authorized("Bearer s3cret", "s3cret")
    assert not is_authorized("Bearer wrong", "s3cret")
    assert not is_authorized("s3cret", "s3cret")
    assert not is_authorized(None, "s3cret")
    # Disabled when no secret is configured
    assert is_authorized(None, "")
