"""
Schemas Module
==============

Pydantic models for request validation.
"""

from app.schemas.watering import WateringAction, WateringControlRequest

__all__ = ["WateringAction", "WateringControlRequest"]
