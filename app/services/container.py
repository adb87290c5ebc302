from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.config import AppConfig
from app.services.ai.llm_backends import LLMBackend
from app.services.ai.watering_advisor import WateringAdvisor
from app.services.application.decision_engine import DecisionEngine
from app.services.application.history_service import WateringHistoryService
from app.services.application.session_lifecycle_service import SessionLifecycleService
from app.services.application.watering_scheduler import WateringScheduler
from app.services.container_builder import ContainerBuilder
from app.services.hardware.device_client import SignedDeviceClient
from app.services.utilities.weather_service import WeatherService
from infrastructure.database.repositories.watering import (
    SensorReadingRepository,
    WateringSessionRepository,
    WeatherSnapshotRepository,
    ZoneRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Aggregate and manage the watering engine's services."""

    config: AppConfig
    database: SQLiteDatabaseHandler
    session_repo: WateringSessionRepository
    reading_repo: SensorReadingRepository
    weather_snapshot_repo: WeatherSnapshotRepository
    zone_repo: ZoneRepository
    audit_logger: AuditLogger
    # External adapters
    device_client: SignedDeviceClient
    weather_service: WeatherService
    llm_backend: Optional[LLMBackend]
    watering_advisor: WateringAdvisor
    # Application services
    decision_engine: DecisionEngine
    lifecycle_service: SessionLifecycleService
    watering_scheduler: WateringScheduler
    history_service: WateringHistoryService

    @classmethod
    def build(cls, config: AppConfig, **overrides: Any) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Args:
            config: Application configuration
            **overrides: ``clock``, ``device_client``, ``weather_service`` or
                ``llm_backend`` to use instead of the configured ones
        """
        logger.info("Building ServiceContainer using ContainerBuilder...")
        container = cls(**ContainerBuilder(config, **overrides).build())
        logger.info("ServiceContainer built successfully.")
        return container

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        self.database.close_db()
        logger.info("ServiceContainer shutdown complete.")
