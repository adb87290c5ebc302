"""Daily time window gate for automated watering starts."""

from __future__ import annotations

from datetime import datetime

from app.utils.time import to_local


def is_within_window(now: datetime, start_hour: int, end_hour: int, timezone: str) -> bool:
    """Return True when the local hour of *now* lies in ``[start_hour, end_hour)``.

    A window whose start is after its end wraps past midnight (e.g. 22-6).
    Equal start and end hours describe an empty window.
    """
    hour = to_local(now, timezone).hour
    if start_hour == end_hour:
        return False
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour
