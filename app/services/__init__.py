"""
Service Organization
====================
Services are organized by what they talk to:

**application/**
  Services managed by ServiceContainer, one instance per process:
  DecisionEngine, SessionLifecycleService, WateringScheduler,
  WateringHistoryService.

**hardware/**
  The signed device gateway client and soil sensor status parsing.

**ai/**
  Optional LLM backends and the watering advisor built on them.

**utilities/**
  External data adapters with no shared state (weather provider).
"""
