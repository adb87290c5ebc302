from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from app.domain.exceptions import AdvisoryError, AdvisoryParseError, AdvisoryValidationError
from app.domain.watering import WateringSession
from app.enums import DecisionConfidence, TriggerKind
from app.services.ai.llm_backends import LLMResponse, create_backend
from app.services.ai.watering_advisor import (
    WateringAdvisor,
    WateringContext,
    build_prompt,
    extract_json_object,
    interpret_decision,
)

NOW = datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)


def make_backend(text="", error=None):
    backend = Mock()
    backend.is_available = True
    backend.name = "fake"
    if error is not None:
        backend.generate.side_effect = error
    else:
        backend.generate.return_value = LLMResponse(text=text, model="fake-model")
    return backend


def make_context(**overrides):
    values = {"zone_id": "garden", "zone_name": "Garden", "moisture_percent": 32.0, "now": NOW}
    values.update(overrides)
    return WateringContext(**values)


# --- parsing --------------------------------------------------------------


def test_extract_json_from_fenced_reply():
    reply = 'Sure! Here is my answer:\n```json\n{"should_water": true, "duration_minutes": 20}\n```\nThanks'
    assert extract_json_object(reply) == {"should_water": True, "duration_minutes": 20}


def test_extract_json_skips_broken_braces():
    assert extract_json_object('{oops} then {"a": 1}') == {"a": 1}


@pytest.mark.parametrize("reply", ["", "   ", "no json here", "[1, 2, 3]"])
def test_extract_json_without_object_raises_parse_error(reply):
    with pytest.raises(AdvisoryParseError):
        extract_json_object(reply)


def test_interpret_decision_accepts_camel_case():
    decision = interpret_decision(
        {"shouldWater": True, "durationMinutes": 22.6, "reasoning": " Dry soil ", "confidence": "HIGH"}
    )
    assert decision.should_water is True
    assert decision.duration_minutes == 23
    assert decision.reason == "Dry soil"
    assert decision.confidence is DecisionConfidence.HIGH
    assert decision.strategy == "advisory"


def test_interpret_decision_defaults_duration_when_not_watering():
    decision = interpret_decision({"should_water": False, "reason": "Rain due", "confidence": "medium"})
    assert decision.duration_minutes == 0


@pytest.mark.parametrize(
    "data",
    [
        {"should_water": "yes", "duration_minutes": 10, "reason": "r", "confidence": "low"},
        {"should_water": True, "reason": "r", "confidence": "low"},
        {"should_water": True, "duration_minutes": -5, "reason": "r", "confidence": "low"},
        {"should_water": True, "duration_minutes": 10, "reason": "", "confidence": "low"},
        {"should_water": True, "duration_minutes": 10, "reason": "r", "confidence": "certain"},
    ],
)
def test_interpret_decision_rejects_invalid_fields(data):
    with pytest.raises(AdvisoryValidationError):
        interpret_decision(data)


# --- advisor --------------------------------------------------------------


def test_advise_returns_unclamped_decision():
    backend = make_backend('{"should_water": true, "duration_minutes": 90, "reason": "Hot", "confidence": "high"}')
    advisor = WateringAdvisor(backend=backend, max_tokens=256, temperature=0.1)

    decision = advisor.advise(make_context())

    assert decision.duration_minutes == 90
    kwargs = backend.generate.call_args.kwargs
    assert kwargs["max_tokens"] == 256
    assert kwargs["json_mode"] is True
    assert "Soil moisture: 32%" in kwargs["user_prompt"]


@pytest.mark.parametrize("duration", ["NaN", "Infinity", "-Infinity", "1e999"])
def test_advise_rejects_non_finite_duration(duration):
    reply = f'{{"should_water": true, "duration_minutes": {duration}, "reason": "Dry", "confidence": "high"}}'
    advisor = WateringAdvisor(backend=make_backend(reply))

    with pytest.raises(AdvisoryValidationError):
        advisor.advise(make_context())


def test_interpret_decision_keeps_huge_integer_for_clamping():
    decision = interpret_decision(
        {"should_water": True, "duration_minutes": 10**400, "reason": "Dry", "confidence": "low"}
    )
    assert decision.duration_minutes == 10**400


def test_advise_wraps_backend_errors():
    advisor = WateringAdvisor(backend=make_backend(error=TimeoutError("slow")))
    with pytest.raises(AdvisoryError):
        advisor.advise(make_context())


def test_advisor_without_backend_is_unavailable():
    advisor = WateringAdvisor(backend=None)
    assert not advisor.is_available
    assert advisor.provider_name == "none"
    with pytest.raises(AdvisoryError):
        advisor.advise(make_context())


def test_build_prompt_includes_weather_and_history(weather_signal):
    session = WateringSession(
        id=1,
        zone_id="garden",
        device_id="tap-1",
        started_at=NOW - timedelta(days=1),
        trigger=TriggerKind.AUTOMATED,
        duration_seconds=1800,
    )
    prompt = build_prompt(
        make_context(
            plant_description="Roses",
            weather=weather_signal,
            recent_sessions=[session],
            min_duration_minutes=10,
            max_duration_minutes=45,
        )
    )
    assert "Plants: Roses" in prompt
    assert "0.5mm in last 7 days" in prompt
    assert "30 min (automated)" in prompt
    assert "between 10 and 45 minutes" in prompt


def test_build_prompt_without_weather_or_history():
    prompt = build_prompt(make_context())
    assert "Weather: unavailable" in prompt
    assert "Recent watering: none recorded" in prompt


def test_create_backend_none_and_unknown():
    assert create_backend("none") is None
    assert create_backend("") is None
    assert create_backend("mystery", api_key="k") is None


def test_create_backend_without_key_is_disabled():
    assert create_backend("openai", api_key="") is None
