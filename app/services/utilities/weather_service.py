"""
Weather Service
===============

Fetches current conditions, recent rainfall and the daily forecast from an
Open-Meteo compatible API and turns them into a :class:`WeatherSignal`.

Features:
- 24h / 7 day rainfall totals computed from hourly precipitation
- WMO weather code descriptions
- Rule-based watering recommendation from rainfall alone
- Short in-memory cache to avoid refetching on every trigger
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import requests

from app.domain.exceptions import WeatherUnavailableError
from app.domain.watering import DailyForecast, WateringRecommendation, WeatherSignal
from app.utils.time import utc_now

logger = logging.getLogger(__name__)

WEATHER_CODES: dict[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}


def describe_weather_code(code: int | None) -> str:
    if code is None:
        return "Unknown"
    return WEATHER_CODES.get(int(code), "Unknown")


def recommend_watering(
    rainfall_last_7days: float,
    forecast: list[DailyForecast],
) -> WateringRecommendation:
    """Rainfall-only watering recommendation over the next three days."""
    upcoming = forecast[:3]
    rain_next_3 = sum(day.precipitation_sum or 0.0 for day in upcoming)
    probability_next_3 = max((day.precipitation_probability or 0 for day in upcoming), default=0)

    if rainfall_last_7days > 10:
        return WateringRecommendation(
            should_water=False,
            reason=f"{rainfall_last_7days:.1f}mm of rain in the last 7 days - soil should be moist",
            urgency="none",
        )
    if probability_next_3 > 70 and rain_next_3 > 5:
        return WateringRecommendation(
            should_water=False,
            reason=(
                f"Rain forecast: {rain_next_3:.1f}mm expected in next 3 days "
                f"({probability_next_3}% chance)"
            ),
            urgency="none",
        )
    if probability_next_3 > 50 and rain_next_3 > 2:
        return WateringRecommendation(
            should_water=False,
            reason=(
                f"Possible rain: {rain_next_3:.1f}mm expected ({probability_next_3}% chance) "
                "- consider waiting"
            ),
            urgency="low",
        )
    if rainfall_last_7days < 2 and rain_next_3 < 2:
        return WateringRecommendation(
            should_water=True,
            reason="No recent rain and dry forecast - watering recommended",
            urgency="high",
        )
    if rainfall_last_7days < 5:
        return WateringRecommendation(
            should_water=True,
            reason=f"Only {rainfall_last_7days:.1f}mm in last 7 days - light watering suggested",
            urgency="medium",
        )
    return WateringRecommendation(
        should_water=False,
        reason="Conditions look adequate - monitor soil moisture",
        urgency="low",
    )


class WeatherService:
    """
    Client for the Open-Meteo forecast API.

    The API is free and needs no authentication. Responses are cached for
    ``cache_ttl_seconds`` so that back-to-back triggers share one fetch.
    """

    CURRENT_FIELDS = "temperature_2m,relative_humidity_2m,precipitation,weather_code,wind_speed_10m"
    HOURLY_FIELDS = "precipitation,precipitation_probability"
    DAILY_FIELDS = (
        "weather_code,temperature_2m_max,temperature_2m_min,precipitation_sum,precipitation_probability_max"
    )

    def __init__(
        self,
        api_url: str,
        latitude: float,
        longitude: float,
        *,
        timeout: float = 10.0,
        cache_ttl_seconds: int = 1800,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.api_url = api_url
        self.latitude = latitude
        self.longitude = longitude
        self.timeout = timeout
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._session = session or requests.Session()
        self._clock = clock
        self._cached: tuple[datetime, WeatherSignal] | None = None

    def fetch(self, *, use_cache: bool = True) -> WeatherSignal:
        """Return the current weather signal. Raises WeatherUnavailableError."""
        now = self._clock()
        if use_cache and self._cached and now - self._cached[0] < self.cache_ttl:
            return self._cached[1]

        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "current": self.CURRENT_FIELDS,
            "hourly": self.HOURLY_FIELDS,
            "daily": self.DAILY_FIELDS,
            "past_days": 7,
            "forecast_days": 7,
            "timezone": "auto",
        }
        try:
            response = self._session.get(self.api_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as exc:
            logger.warning("Weather fetch failed: %s", exc)
            raise WeatherUnavailableError(f"Weather provider unreachable: {exc}") from exc
        except ValueError as exc:
            raise WeatherUnavailableError("Weather provider returned invalid JSON") from exc

        try:
            signal = self.parse(data, now)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            logger.warning("Weather response could not be parsed: %s", exc)
            raise WeatherUnavailableError("Weather provider returned an unexpected payload") from exc

        self._cached = (now, signal)
        return signal

    def recommend(self, signal: WeatherSignal) -> WateringRecommendation:
        return recommend_watering(signal.rainfall_last_7days, signal.forecast)

    @staticmethod
    def parse(data: dict[str, Any], now: datetime) -> WeatherSignal:
        """Build a WeatherSignal from a raw Open-Meteo response."""
        offset = timezone(timedelta(seconds=int(data.get("utc_offset_seconds") or 0)))
        current = data["current"]
        hourly = data.get("hourly") or {}
        daily = data["daily"]

        last_24h_start = now - timedelta(hours=24)
        last_7d_start = now - timedelta(days=7)
        last_24h = 0.0
        last_7d = 0.0
        for stamp, amount in zip(hourly.get("time") or [], hourly.get("precipitation") or []):
            at = datetime.fromisoformat(stamp)
            if at.tzinfo is None:
                at = at.replace(tzinfo=offset)
            if last_7d_start <= at <= now:
                last_7d += amount or 0.0
                if at >= last_24h_start:
                    last_24h += amount or 0.0

        today = now.astimezone(offset).date().isoformat()
        forecast: list[DailyForecast] = []
        for idx, day in enumerate(daily["time"]):
            if day < today:
                continue
            code = daily["weather_code"][idx]
            forecast.append(
                DailyForecast(
                    date=day,
                    weather_code=int(code) if code is not None else -1,
                    weather_description=describe_weather_code(code),
                    temp_max=daily["temperature_2m_max"][idx],
                    temp_min=daily["temperature_2m_min"][idx],
                    precipitation_sum=daily["precipitation_sum"][idx] or 0.0,
                    precipitation_probability=daily["precipitation_probability_max"][idx] or 0,
                )
            )
            if len(forecast) == 7:
                break

        return WeatherSignal(
            temperature=current["temperature_2m"],
            humidity=int(current["relative_humidity_2m"]),
            precipitation=current.get("precipitation") or 0.0,
            weather_code=int(current["weather_code"]),
            weather_description=describe_weather_code(current["weather_code"]),
            wind_speed=current.get("wind_speed_10m") or 0.0,
            rainfall_last_24h=round(last_24h, 1),
            rainfall_last_7days=round(last_7d, 1),
            forecast=forecast,
            fetched_at=now,
        )
