"""
Common Enumerations
====================

Enums shared by the watering engine: session triggers, decision confidence,
scheduler actions and the derived per-zone session state.
"""

from enum import Enum


class TriggerKind(str, Enum):
    """
    What caused a watering session to start.
    Used by: session lifecycle, history API
    """
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    AUTOMATED = "automated"

    def __str__(self) -> str:
        return self.value

    @property
    def has_scheduled_end(self) -> bool:
        return self in (TriggerKind.SCHEDULED, TriggerKind.AUTOMATED)


class DecisionConfidence(str, Enum):
    """Confidence tag attached to a watering decision."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class SchedulerAction(str, Enum):
    """
    Outcome of one scheduler invocation.
    Used by: watering_scheduler, cron API, CLI
    """
    NONE = "none"
    SKIPPED = "skipped"
    STARTED = "started"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value


class SessionState(str, Enum):
    """Per-zone state derived from whether an open session exists."""
    IDLE = "idle"
    ACTIVE = "active"

    def __str__(self) -> str:
        return self.value
