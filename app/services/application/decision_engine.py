"""
Watering decision engine.

Reads the zone's soil sensor, persists the reading, gathers weather and recent
history, then asks each configured strategy in order for a decision. The
advisory strategy comes first when an LLM backend is configured; the
deterministic strategy is always last and cannot fail.

Every decision, whatever its source, passes through :meth:`DecisionEngine.apply_safety`:
durations are clamped into ``[min, max]`` when watering, forced to 0 when
not, and the daily frequency cap can veto a start.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from app.domain.exceptions import AdvisoryError, SensorReadError, WeatherUnavailableError
from app.domain.watering import SensorReading, WateringDecision, WeatherSignal
from app.enums import DecisionConfidence
from app.services.ai.watering_advisor import WateringAdvisor, WateringContext
from app.services.hardware.soil_sensor import parse_soil_status, require_moisture
from app.utils.time import to_local

if TYPE_CHECKING:
    from app.config import AppConfig, ZoneConfig
    from app.services.hardware.device_client import SignedDeviceClient
    from app.services.utilities.weather_service import WeatherService
    from infrastructure.database.repositories.base import ReadingStore, SessionStore

logger = logging.getLogger(__name__)

StepLog = Callable[..., None]


def _default_log(message: str, *args: Any) -> None:
    logger.info(message, *args)


@dataclass(frozen=True)
class WateringPolicy:
    """Thresholds and hard limits applied to every decision."""

    low_threshold: float = 50.0
    very_dry_threshold: float = 25.0
    default_duration_minutes: int = 30
    very_dry_duration_minutes: int = 45
    min_duration_minutes: int = 10
    max_duration_minutes: int = 45
    max_sessions_per_day: int = 2

    @classmethod
    def from_config(cls, config: "AppConfig") -> "WateringPolicy":
        return cls(
            low_threshold=config.low_moisture_threshold,
            very_dry_threshold=config.very_dry_threshold,
            default_duration_minutes=config.default_duration_minutes,
            very_dry_duration_minutes=config.very_dry_duration_minutes,
            min_duration_minutes=config.min_duration_minutes,
            max_duration_minutes=config.max_duration_minutes,
            max_sessions_per_day=config.max_sessions_per_day,
        )

    def clamp(self, minutes: int) -> int:
        return max(self.min_duration_minutes, min(self.max_duration_minutes, int(minutes)))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class DecisionStrategy(ABC):
    """One way of turning a :class:`WateringContext` into a decision."""

    name: str = ""

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    def decide(self, context: WateringContext) -> WateringDecision: ...


class AdvisoryStrategy(DecisionStrategy):
    """LLM-backed strategy. Raises AdvisoryError subclasses on any failure."""

    name = "advisory"

    def __init__(self, advisor: WateringAdvisor):
        self._advisor = advisor

    @property
    def is_available(self) -> bool:
        return self._advisor.is_available

    def decide(self, context: WateringContext) -> WateringDecision:
        return self._advisor.advise(context)


class DeterministicStrategy(DecisionStrategy):
    """Fixed thresholds: water below the low threshold, longer when very dry."""

    name = "deterministic"

    def __init__(self, policy: WateringPolicy):
        self._policy = policy

    def decide(self, context: WateringContext) -> WateringDecision:
        policy = self._policy
        moisture = context.moisture_percent
        margin = abs(moisture - policy.low_threshold)
        confidence = DecisionConfidence.HIGH if margin >= 10 else DecisionConfidence.MEDIUM

        if moisture >= policy.low_threshold:
            return WateringDecision(
                should_water=False,
                duration_minutes=0,
                reason=f"Moisture {moisture:.0f}% is at or above optimal ({policy.low_threshold:.0f}%)",
                confidence=confidence,
                strategy=self.name,
            )
        if moisture < policy.very_dry_threshold:
            return WateringDecision(
                should_water=True,
                duration_minutes=policy.very_dry_duration_minutes,
                reason=f"Soil is very dry ({moisture:.0f}%)",
                confidence=confidence,
                strategy=self.name,
            )
        return WateringDecision(
            should_water=True,
            duration_minutes=policy.default_duration_minutes,
            reason=f"Soil is moderately dry ({moisture:.0f}%)",
            confidence=confidence,
            strategy=self.name,
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class Evaluation:
    """Result of one decision cycle for a zone."""

    decision: WateringDecision
    reading: SensorReading
    weather: WeatherSignal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "reading": self.reading.to_dict(),
            "weather": self.weather.to_dict() if self.weather else None,
        }


class DecisionEngine:
    """Produce a clamped watering decision for a zone."""

    def __init__(
        self,
        *,
        policy: WateringPolicy,
        strategies: list[DecisionStrategy],
        device_client: "SignedDeviceClient",
        readings: "ReadingStore",
        sessions: "SessionStore",
        weather_service: "WeatherService | None" = None,
        timezone: str = "UTC",
        history_limit: int = 10,
        history_days: int = 7,
    ) -> None:
        if not strategies or not isinstance(strategies[-1], DeterministicStrategy):
            raise ValueError("The last decision strategy must be DeterministicStrategy")
        self.policy = policy
        self._strategies = strategies
        self._device_client = device_client
        self._readings = readings
        self._sessions = sessions
        self._weather = weather_service
        self._timezone = timezone
        self._history_limit = history_limit
        self._history_days = history_days

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    def read_soil(self, zone: "ZoneConfig", now: datetime, log: StepLog = _default_log) -> SensorReading:
        """Read and persist the zone's moisture. Raises SensorReadError when unusable."""
        state = self._device_client.read_status(zone.sensor_device_id)
        soil = parse_soil_status(state)
        temperature = f"{soil.temperature:.1f}°C" if soil.temperature is not None else "N/A"
        log("Current moisture: %s%%, temperature: %s", soil.moisture, temperature)
        moisture = require_moisture(soil)
        return self._readings.add(zone.zone_id, moisture, soil.temperature, now)

    def fetch_weather(self, log: StepLog = _default_log) -> WeatherSignal | None:
        if self._weather is None:
            return None
        try:
            signal = self._weather.fetch()
        except WeatherUnavailableError as exc:
            log("Weather unavailable, deciding without it: %s", exc)
            return None
        log(
            "Weather: %s, %.1fmm rain in last 7 days",
            signal.weather_description,
            signal.rainfall_last_7days,
        )
        return signal

    def evaluate(self, zone: "ZoneConfig", now: datetime, log: StepLog = _default_log) -> Evaluation:
        """Run one full decision cycle for *zone*."""
        if not zone.sensor_device_id:
            raise SensorReadError(f"Zone {zone.zone_id} has no soil sensor configured")

        reading = self.read_soil(zone, now, log)
        weather = self.fetch_weather(log)
        recent = self._sessions.list_recent(
            zone.zone_id,
            since=now - timedelta(days=self._history_days),
            limit=self._history_limit,
        )
        context = WateringContext(
            zone_id=zone.zone_id,
            zone_name=zone.name,
            plant_description=zone.plant_description,
            moisture_percent=reading.moisture_percent,
            soil_temperature=reading.temperature,
            now=to_local(now, self._timezone),
            weather=weather,
            weather_recommendation=self._weather.recommend(weather) if (weather and self._weather) else None,
            recent_sessions=recent,
            low_threshold=self.policy.low_threshold,
            min_duration_minutes=self.policy.min_duration_minutes,
            max_duration_minutes=self.policy.max_duration_minutes,
        )
        sessions_last_day = self._sessions.count_started_since(zone.zone_id, now - timedelta(hours=24))
        decision = self.decide(context, sessions_last_day=sessions_last_day, log=log)
        return Evaluation(decision=decision, reading=reading, weather=weather)

    def decide(
        self,
        context: WateringContext,
        *,
        sessions_last_day: int = 0,
        log: StepLog = _default_log,
    ) -> WateringDecision:
        """Ask strategies in order and return the first answer, made safe."""
        raw: WateringDecision | None = None
        for strategy in self._strategies:
            if not strategy.is_available:
                log("Strategy %s unavailable, falling back", strategy.name)
                continue
            try:
                raw = strategy.decide(context)
                break
            except AdvisoryError as exc:
                log("Strategy %s failed (%s), falling back", strategy.name, exc.__class__.__name__)
                logger.warning("Strategy %s failed: %s", strategy.name, exc)

        if raw is None:
            # Only when every strategy reported itself unavailable
            raw = DeterministicStrategy(self.policy).decide(context)

        decision = self.apply_safety(raw, sessions_last_day=sessions_last_day)
        log(
            "Decision (%s): water=%s, duration=%s min, confidence=%s - %s",
            decision.strategy,
            decision.should_water,
            decision.duration_minutes,
            decision.confidence,
            decision.reason,
        )
        return decision

    def apply_safety(self, decision: WateringDecision, *, sessions_last_day: int = 0) -> WateringDecision:
        """Clamp durations and enforce the daily frequency cap."""
        policy = self.policy
        if not decision.should_water:
            return WateringDecision(
                should_water=False,
                duration_minutes=0,
                reason=decision.reason,
                confidence=decision.confidence,
                strategy=decision.strategy,
            )

        cap = policy.max_sessions_per_day
        if cap > 0 and sessions_last_day >= cap:
            return WateringDecision(
                should_water=False,
                duration_minutes=0,
                reason=(
                    f"Daily limit reached ({sessions_last_day} of {cap} sessions in the last 24h); "
                    f"{decision.reason}"
                ),
                confidence=decision.confidence,
                strategy=decision.strategy,
            )

        clamped = policy.clamp(decision.duration_minutes)
        reason = decision.reason
        if clamped != decision.duration_minutes:
            reason = f"{reason} (duration {decision.duration_minutes} min clamped to {clamped})"
        return WateringDecision(
            should_water=True,
            duration_minutes=clamped,
            reason=reason,
            confidence=decision.confidence,
            strategy=decision.strategy,
        )
