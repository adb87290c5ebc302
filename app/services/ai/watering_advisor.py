"""
Watering Advisor
================
Asks an :class:`LLMBackend` whether a zone should be watered now and turns
the free-text reply into a :class:`WateringDecision`.

Parsing is two separate steps so failures can be told apart:

1. :func:`extract_json_object` finds the first JSON object in the reply,
   tolerating surrounding prose and markdown fences
   (:class:`AdvisoryParseError` when there is none).
2. :func:`interpret_decision` validates its fields
   (:class:`AdvisoryValidationError` when they do not form a decision).

The advisor never clamps durations; the decision engine does that for every
strategy.

Usage
-----
::

    advisor = WateringAdvisor(backend=my_backend)
    decision = advisor.advise(context)   # raises AdvisoryError subclasses
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.domain.exceptions import AdvisoryError, AdvisoryParseError, AdvisoryValidationError
from app.domain.watering import (
    WateringDecision,
    WateringRecommendation,
    WateringSession,
    WeatherSignal,
)
from app.enums import DecisionConfidence

if TYPE_CHECKING:
    from app.services.ai.llm_backends import LLMBackend

logger = logging.getLogger(__name__)

STRATEGY_NAME = "advisory"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass
class WateringContext:
    """Everything the advisor is told about one zone for one decision."""

    zone_id: str
    zone_name: str
    moisture_percent: float
    now: datetime
    plant_description: str = ""
    soil_temperature: float | None = None
    weather: WeatherSignal | None = None
    weather_recommendation: WateringRecommendation | None = None
    recent_sessions: list[WateringSession] = field(default_factory=list)
    low_threshold: float | None = None
    min_duration_minutes: int | None = None
    max_duration_minutes: int | None = None


_SYSTEM_PROMPT = """\
You are an irrigation controller for a home garden. You decide whether a \
zone's tap should be turned on now, and for how long.

Base the decision on the soil moisture reading, recent and forecast rain, \
the plants described, and how recently the zone was watered. Prefer not \
watering when meaningful rain is likely within a day.

Respond with a single JSON object and nothing else:
{
  "should_water": true | false,
  "duration_minutes": <integer minutes, 0 when not watering>,
  "reason": "<one sentence>",
  "confidence": "high" | "medium" | "low"
}"""


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object embedded in *text*.

    Raises AdvisoryParseError when no object can be decoded.
    """
    if not text or not text.strip():
        raise AdvisoryParseError("Advisory reply was empty")

    cleaned = _FENCE_RE.sub("", text)
    decoder = json.JSONDecoder()
    start = cleaned.find("{")
    while start != -1:
        try:
            obj, _end = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            start = cleaned.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = cleaned.find("{", start + 1)

    raise AdvisoryParseError("No JSON object found in advisory reply", detail={"reply": text[:200]})


def _field(data: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


def interpret_decision(data: dict[str, Any]) -> WateringDecision:
    """Validate decoded JSON fields and build an (unclamped) decision."""
    should_water = _field(data, "should_water", "shouldWater")
    if not isinstance(should_water, bool):
        raise AdvisoryValidationError(f"should_water must be a boolean, got {should_water!r}")

    duration = _field(data, "duration_minutes", "durationMinutes", "duration")
    if duration is None and not should_water:
        duration = 0
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise AdvisoryValidationError(f"duration_minutes must be a number, got {duration!r}")
    if isinstance(duration, float) and not math.isfinite(duration):
        raise AdvisoryValidationError(f"duration_minutes must be finite, got {duration!r}")
    if duration < 0:
        raise AdvisoryValidationError(f"duration_minutes must not be negative, got {duration}")

    reason = _field(data, "reason", "reasoning")
    if not isinstance(reason, str) or not reason.strip():
        raise AdvisoryValidationError("reason must be a non-empty string")

    raw_confidence = _field(data, "confidence")
    try:
        confidence = DecisionConfidence(str(raw_confidence).strip().lower())
    except ValueError:
        raise AdvisoryValidationError(f"confidence must be high, medium or low, got {raw_confidence!r}") from None

    return WateringDecision(
        should_water=should_water,
        duration_minutes=int(round(duration)),
        reason=reason.strip(),
        confidence=confidence,
        strategy=STRATEGY_NAME,
    )


class WateringAdvisor:
    """
    Advisory decision source backed by an LLM.

    Parameters
    ----------
    backend:
        An initialised :class:`LLMBackend`, or ``None`` (always unavailable).
    max_tokens:
        Token budget for the reply.
    temperature:
        Sampling temperature.
    """

    def __init__(
        self,
        backend: "LLMBackend | None" = None,
        max_tokens: int = 512,
        temperature: float = 0.3,
    ):
        self._backend = backend
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def is_available(self) -> bool:
        return self._backend is not None and self._backend.is_available

    @property
    def provider_name(self) -> str:
        return self._backend.name if self._backend is not None else "none"

    def advise(self, context: WateringContext) -> WateringDecision:
        """Ask the backend for a decision. Raises AdvisoryError subclasses."""
        if not self.is_available:
            raise AdvisoryError("Advisory backend is not available")

        try:
            reply = self._backend.generate(  # type: ignore[union-attr]
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=build_prompt(context),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                json_mode=True,
            )
        except Exception as exc:
            # SDKs raise their own exception trees; all of them mean "no advice"
            logger.warning("Advisory backend %s failed: %s", self.provider_name, exc)
            raise AdvisoryError(f"Advisory backend error: {exc}") from exc

        logger.debug("Advisory reply (%.0f ms): %s", reply.latency_ms, reply.text)
        return interpret_decision(extract_json_object(reply.text))


def build_prompt(context: WateringContext) -> str:
    """Format a :class:`WateringContext` into the user prompt."""
    parts: list[str] = [f"Zone: {context.zone_name} ({context.zone_id})"]
    if context.plant_description:
        parts.append(f"Plants: {context.plant_description}")
    parts.append(f"Local time: {context.now.isoformat(timespec='minutes')}")

    soil = f"Soil moisture: {context.moisture_percent:.0f}%"
    if context.soil_temperature is not None:
        soil += f", soil temperature: {context.soil_temperature:.1f}°C"
    parts.append(soil)
    if context.low_threshold is not None:
        parts.append(f"Moisture below {context.low_threshold:.0f}% is considered dry.")

    weather = context.weather
    if weather is not None:
        parts.append(
            "Weather now: "
            f"{weather.weather_description}, {weather.temperature}°C, humidity {weather.humidity}%, "
            f"wind {weather.wind_speed} km/h"
        )
        parts.append(
            f"Rain: {weather.rainfall_last_24h}mm in last 24h, {weather.rainfall_last_7days}mm in last 7 days"
        )
        forecast_lines = [
            f"  {day.date}: {day.weather_description}, {day.temp_min}-{day.temp_max}°C, "
            f"{day.precipitation_sum}mm ({day.precipitation_probability}% chance)"
            for day in weather.upcoming(3)
        ]
        if forecast_lines:
            parts.append("Forecast:\n" + "\n".join(forecast_lines))
    else:
        parts.append("Weather: unavailable")

    if context.weather_recommendation is not None:
        parts.append(f"Rainfall rule says: {context.weather_recommendation.reason}")

    if context.recent_sessions:
        history = [
            f"  {s.started_at.isoformat(timespec='minutes')}: "
            f"{round((s.duration_seconds or 0) / 60)} min ({s.trigger})"
            for s in context.recent_sessions
        ]
        parts.append("Recent watering:\n" + "\n".join(history))
    else:
        parts.append("Recent watering: none recorded")

    if context.min_duration_minutes is not None and context.max_duration_minutes is not None:
        parts.append(
            f"Durations must be between {context.min_duration_minutes} and "
            f"{context.max_duration_minutes} minutes."
        )
    parts.append("Should this zone be watered now?")
    return "\n".join(parts)
