from datetime import timedelta
from unittest.mock import Mock

import pytest

from app.domain.exceptions import (
    AdvisoryParseError,
    AdvisoryValidationError,
    SensorReadError,
    WeatherUnavailableError,
)
from app.domain.watering import WateringDecision
from app.enums import DecisionConfidence, TriggerKind
from app.services.ai.llm_backends import LLMResponse
from app.services.ai.watering_advisor import WateringAdvisor, WateringContext
from app.services.application.decision_engine import (
    AdvisoryStrategy,
    DecisionEngine,
    DecisionStrategy,
    DeterministicStrategy,
    WateringPolicy,
)


class StubStrategy(DecisionStrategy):
    name = "advisory"

    def __init__(self, decision=None, error=None, available=True):
        self.decision = decision
        self.error = error
        self.available = available
        self.calls = 0

    @property
    def is_available(self):
        return self.available

    def decide(self, context):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.decision


def context(moisture, clock_now):
    return WateringContext(zone_id="garden", zone_name="Garden", moisture_percent=moisture, now=clock_now)


def advisory(should_water=True, minutes=20):
    return WateringDecision(
        should_water=should_water,
        duration_minutes=minutes,
        reason="Advisor says so",
        confidence=DecisionConfidence.LOW,
        strategy="advisory",
    )


def make_engine(policy, strategies, device_client, reading_repo, session_repo, weather_service=None):
    return DecisionEngine(
        policy=policy,
        strategies=strategies,
        device_client=device_client,
        readings=reading_repo,
        sessions=session_repo,
        weather_service=weather_service,
        timezone="Europe/London",
    )


# --- policy & deterministic strategy -------------------------------------


def test_policy_clamp():
    policy = WateringPolicy()
    assert policy.clamp(5) == 10
    assert policy.clamp(30) == 30
    assert policy.clamp(90) == 45


@pytest.mark.parametrize(
    "moisture, should_water, minutes",
    [
        (60, False, 0),
        (50, False, 0),
        (49, True, 30),
        (25, True, 30),
        (24.9, True, 45),
        (5, True, 45),
    ],
)
def test_deterministic_thresholds(moisture, should_water, minutes, clock):
    decision = DeterministicStrategy(WateringPolicy()).decide(context(moisture, clock()))
    assert decision.should_water is should_water
    assert decision.duration_minutes == minutes
    assert decision.strategy == "deterministic"


def test_deterministic_confidence_reflects_margin(clock):
    strategy = DeterministicStrategy(WateringPolicy())
    assert strategy.decide(context(20, clock())).confidence is DecisionConfidence.HIGH
    assert strategy.decide(context(45, clock())).confidence is DecisionConfidence.MEDIUM


def test_engine_requires_deterministic_last(policy, device_client, reading_repo, session_repo):
    with pytest.raises(ValueError):
        make_engine(policy, [StubStrategy(advisory())], device_client, reading_repo, session_repo)


# --- strategy chain and safety -------------------------------------------


def test_advisory_decision_is_clamped(policy, device_client, reading_repo, session_repo, clock):
    engine = make_engine(
        policy,
        [StubStrategy(advisory(minutes=120)), DeterministicStrategy(policy)],
        device_client,
        reading_repo,
        session_repo,
    )
    decision = engine.decide(context(40, clock()))

    assert decision.strategy == "advisory"
    assert decision.duration_minutes == 45
    assert "clamped" in decision.reason


def test_advisory_no_water_forces_zero_duration(policy, device_client, reading_repo, session_repo, clock):
    engine = make_engine(
        policy,
        [StubStrategy(advisory(should_water=False, minutes=20)), DeterministicStrategy(policy)],
        device_client,
        reading_repo,
        session_repo,
    )
    decision = engine.decide(context(10, clock()))
    assert decision.should_water is False
    assert decision.duration_minutes == 0


@pytest.mark.parametrize(
    "error",
    [AdvisoryParseError("no json"), AdvisoryValidationError("bad confidence")],
)
def test_advisory_failure_falls_back_to_deterministic(error, policy, device_client, reading_repo, session_repo, clock):
    stub = StubStrategy(error=error)
    engine = make_engine(policy, [stub, DeterministicStrategy(policy)], device_client, reading_repo, session_repo)
    lines = []

    decision = engine.decide(context(20, clock()), log=lambda msg, *args: lines.append(msg % args))

    assert stub.calls == 1
    assert decision.strategy == "deterministic"
    assert decision.duration_minutes == 45
    assert any(type(error).__name__ in line for line in lines)


@pytest.mark.parametrize("duration", ["NaN", "Infinity", "1e999"])
def test_non_finite_advisory_duration_falls_back(duration, policy, device_client, reading_repo, session_repo, clock):
    backend = Mock()
    backend.is_available = True
    backend.name = "fake"
    backend.generate.return_value = LLMResponse(
        text=f'{{"should_water": true, "duration_minutes": {duration}, "reason": "Dry", "confidence": "high"}}',
        model="fake-model",
    )
    strategy = AdvisoryStrategy(WateringAdvisor(backend=backend))
    engine = make_engine(policy, [strategy, DeterministicStrategy(policy)], device_client, reading_repo, session_repo)

    decision = engine.decide(context(20, clock()))

    assert backend.generate.call_count == 1
    assert decision.strategy == "deterministic"
    assert decision.should_water is True
    assert decision.duration_minutes == 45


def test_unavailable_advisory_is_skipped(policy, device_client, reading_repo, session_repo, clock):
    stub = StubStrategy(advisory(), available=False)
    engine = make_engine(policy, [stub, DeterministicStrategy(policy)], device_client, reading_repo, session_repo)

    decision = engine.decide(context(40, clock()))
    assert stub.calls == 0
    assert decision.strategy == "deterministic"


def test_daily_cap_vetoes_watering(engine, clock):
    decision = engine.decide(context(10, clock()), sessions_last_day=2)
    assert decision.should_water is False
    assert decision.duration_minutes == 0
    assert decision.reason.startswith("Daily limit reached (2 of 2")


def test_zero_cap_disables_limit(device_client, reading_repo, session_repo, clock):
    policy = WateringPolicy(max_sessions_per_day=0)
    engine = make_engine(policy, [DeterministicStrategy(policy)], device_client, reading_repo, session_repo)
    assert engine.decide(context(10, clock()), sessions_last_day=9).should_water is True


# --- full evaluation ------------------------------------------------------


def test_evaluate_persists_reading_and_uses_weather(engine, zone, reading_repo, weather_service, clock):
    evaluation = engine.evaluate(zone, clock())

    assert evaluation.decision.should_water is True
    assert evaluation.decision.duration_minutes == 30
    assert evaluation.reading.moisture_percent == 30.0
    assert evaluation.reading.temperature == 18.5
    assert evaluation.weather is weather_service.signal
    assert reading_repo.latest("garden").moisture_percent == 30.0


def test_evaluate_without_weather(engine, zone, weather_service, clock):
    weather_service.error = WeatherUnavailableError("down")
    lines = []
    evaluation = engine.evaluate(zone, clock(), lambda msg, *args: lines.append(msg % args))

    assert evaluation.weather is None
    assert evaluation.decision.should_water is True
    assert any("Weather unavailable" in line for line in lines)


def test_evaluate_counts_recent_sessions(engine, zone, session_repo, clock):
    for hours in (5, 3):
        session = session_repo.create(
            zone_id="garden",
            zone_name="Garden",
            device_id="tap-1",
            trigger=TriggerKind.MANUAL,
            started_at=clock() - timedelta(hours=hours),
        )
        session_repo.close(session.id, ended_at=clock() - timedelta(hours=hours - 1), duration_seconds=600, end_reason="manual")

    evaluation = engine.evaluate(zone, clock())
    assert evaluation.decision.should_water is False
    assert "Daily limit" in evaluation.decision.reason


def test_evaluate_passes_context_to_strategy(policy, device_client, reading_repo, session_repo, weather_service, zone, clock):
    stub = Mock(spec=DecisionStrategy)
    stub.name = "advisory"
    stub.is_available = True
    stub.decide.return_value = advisory(minutes=25)
    engine = make_engine(
        policy,
        [stub, DeterministicStrategy(policy)],
        device_client,
        reading_repo,
        session_repo,
        weather_service,
    )

    engine.evaluate(zone, clock())

    ctx = stub.decide.call_args.args[0]
    assert ctx.moisture_percent == 30.0
    assert ctx.plant_description == "Tomatoes and herbs"
    assert ctx.weather_recommendation is not None
    assert ctx.now.utcoffset() == timedelta(hours=1)
    assert ctx.max_duration_minutes == 45


def test_evaluate_zone_without_sensor(engine, zone, clock):
    zone.sensor_device_id = ""
    with pytest.raises(SensorReadError):
        engine.evaluate(zone, clock())


def test_evaluate_sensor_without_moisture(engine, zone, device_client, reading_repo, clock):
    device_client.devices["sensor-1"].status = {"battery_percentage": 10}
    with pytest.raises(SensorReadError):
        engine.evaluate(zone, clock())
    assert reading_repo.latest("garden") is None
