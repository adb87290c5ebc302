"""
Watering Schemas
================

Request schemas for manual zone control.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WateringAction(str, Enum):
    """Manual watering actions."""
    START = "start"
    STOP = "stop"


class WateringControlRequest(BaseModel):
    """Request schema for turning a zone's tap on or off by hand.

    A ``start`` with ``duration_minutes`` records a human-scheduled session
    that the water check stops automatically; without it the session stays
    open until stopped.
    """
    model_config = ConfigDict(extra="forbid")

    action: WateringAction = Field(..., description="start or stop")
    duration_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        le=240,
        description="Minutes until automatic stop (1-240)",
    )

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        """Accept any letter case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("duration_minutes")
    @classmethod
    def only_for_start(cls, v, info):
        if v is not None and info.data.get("action") == WateringAction.STOP:
            raise ValueError("duration_minutes only applies to start")
        return v
