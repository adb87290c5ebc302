"""
Enums Module
============

This module provides enumeration types for the watering engine.
Enums ensure type safety and consistency across the codebase.
"""

from app.enums.common import (
    DecisionConfidence,
    SchedulerAction,
    SessionState,
    TriggerKind,
)

__all__ = [
    "DecisionConfidence",
    "SchedulerAction",
    "SessionState",
    "TriggerKind",
]
