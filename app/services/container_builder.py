"""
Container Builder
=================

Constructs the watering engine's services from an :class:`AppConfig`.

Each build_*() method constructs one layer:
- build_infrastructure(): database, repositories, audit log
- build_adapters(): device gateway client, weather provider
- build_ai_components(): optional LLM backend and the watering advisor
- build_application_components(): decision engine, lifecycle, scheduler, history

Collaborators that talk to the outside world (device client, weather service)
and the clock can be passed in, which is how tests swap in fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from app.config import AppConfig
from app.services.ai.llm_backends import LLMBackend, create_backend
from app.services.ai.watering_advisor import WateringAdvisor
from app.services.application.decision_engine import (
    AdvisoryStrategy,
    DecisionEngine,
    DecisionStrategy,
    DeterministicStrategy,
    WateringPolicy,
)
from app.services.application.history_service import WateringHistoryService
from app.services.application.session_lifecycle_service import SessionLifecycleService
from app.services.application.watering_scheduler import WateringScheduler
from app.services.hardware.device_client import CredentialCache, SignedDeviceClient
from app.services.utilities.weather_service import WeatherService
from app.utils.time import utc_now
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
class InfrastructureComponents:
    """Infrastructure layer components (database, repos, logging)."""

    database: SQLiteDatabaseHandler
    session_repo: WateringSessionRepository
    reading_repo: SensorReadingRepository
    weather_snapshot_repo: WeatherSnapshotRepository
    zone_repo: ZoneRepository
    audit_logger: AuditLogger


@dataclass
class AdapterComponents:
    """Clients for the device gateway and the weather provider."""

    device_client: SignedDeviceClient
    weather_service: WeatherService


@dataclass
class AIComponents:
    llm_backend: LLMBackend | None
    watering_advisor: WateringAdvisor


@dataclass
class ApplicationComponents:
    """Application-level services."""

    decision_engine: DecisionEngine
    lifecycle_service: SessionLifecycleService
    watering_scheduler: WateringScheduler
    history_service: WateringHistoryService


class ContainerBuilder:
    """Builder for constructing the service container."""

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
        device_client: SignedDeviceClient | None = None,
        weather_service: WeatherService | None = None,
        llm_backend: LLMBackend | None = None,
    ):
        self.config = config
        self.clock = clock
        self._device_client = device_client
        self._weather_service = weather_service
        self._llm_backend = llm_backend

    def build_infrastructure(self) -> InfrastructureComponents:
        logger.info("Building infrastructure components...")

        audit_logger = AuditLogger(self.config.audit_log_path, self.config.log_level)
        database = SQLiteDatabaseHandler(self.config.database_path)
        database.init_app(None)

        components = InfrastructureComponents(
            database=database,
            session_repo=WateringSessionRepository(database),
            reading_repo=SensorReadingRepository(database),
            weather_snapshot_repo=WeatherSnapshotRepository(database),
            zone_repo=ZoneRepository(database),
            audit_logger=audit_logger,
        )
        for zone in self.config.zones:
            components.zone_repo.upsert(zone.zone_id, zone.tap_device_id, zone.name, zone.plant_description or None)

        logger.info("✓ Infrastructure components initialized (%s zones)", len(self.config.zones))
        return components

    def build_adapters(self) -> AdapterComponents:
        config = self.config
        device_client = self._device_client
        if device_client is None:
            if not config.device_credentials_configured:
                logger.warning("Device gateway credentials are not set; device calls will fail")
            device_client = SignedDeviceClient(
                config.device_api_endpoint,
                config.device_client_id,
                config.device_client_secret,
                timeout=config.device_timeout_seconds,
                cache=CredentialCache(margin_seconds=config.device_token_margin_seconds),
            )

        weather_service = self._weather_service
        if weather_service is None:
            weather_service = WeatherService(
                config.weather_api_url,
                config.weather_latitude,
                config.weather_longitude,
                timeout=config.weather_timeout_seconds,
                clock=self.clock,
            )
        return AdapterComponents(device_client=device_client, weather_service=weather_service)

    def build_ai_components(self) -> AIComponents:
        config = self.config
        backend = self._llm_backend
        if backend is None:
            backend = create_backend(
                config.llm_provider,
                api_key=config.llm_api_key,
                model=config.llm_model,
                base_url=config.llm_base_url or None,
                timeout=config.llm_timeout,
            )
        advisor = WateringAdvisor(
            backend=backend,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
        )
        if advisor.is_available:
            logger.info("✓ Watering advisor enabled (%s)", advisor.provider_name)
        else:
            logger.info("Watering advisor disabled; deterministic strategy only")
        return AIComponents(llm_backend=backend, watering_advisor=advisor)

    def build_application_components(
        self,
        infra: InfrastructureComponents,
        adapters: AdapterComponents,
        ai: AIComponents,
    ) -> ApplicationComponents:
        config = self.config
        policy = WateringPolicy.from_config(config)

        strategies: list[DecisionStrategy] = []
        if ai.watering_advisor.is_available:
            strategies.append(AdvisoryStrategy(ai.watering_advisor))
        strategies.append(DeterministicStrategy(policy))

        engine = DecisionEngine(
            policy=policy,
            strategies=strategies,
            device_client=adapters.device_client,
            readings=infra.reading_repo,
            sessions=infra.session_repo,
            weather_service=adapters.weather_service,
            timezone=config.timezone,
            history_limit=config.history_limit,
            history_days=config.history_days,
        )
        lifecycle = SessionLifecycleService(
            sessions=infra.session_repo,
            device_client=adapters.device_client,
            audit=infra.audit_logger,
            stale_estimate_minutes=config.stale_session_estimate_minutes,
            clock=self.clock,
        )
        scheduler = WateringScheduler(
            zones=config.zones,
            engine=engine,
            lifecycle=lifecycle,
            device_client=adapters.device_client,
            sessions=infra.session_repo,
            weather_snapshots=infra.weather_snapshot_repo,
            window_start_hour=config.window_start_hour,
            window_end_hour=config.window_end_hour,
            timezone=config.timezone,
            stale_session_hours=config.stale_session_hours,
            clock=self.clock,
        )
        history = WateringHistoryService(
            sessions=infra.session_repo,
            weather_snapshots=infra.weather_snapshot_repo,
            readings=infra.reading_repo,
            clock=self.clock,
        )
        logger.info("✓ Decision strategies: %s", ", ".join(engine.strategy_names))
        return ApplicationComponents(
            decision_engine=engine,
            lifecycle_service=lifecycle,
            watering_scheduler=scheduler,
            history_service=history,
        )

    def build(self) -> dict[str, Any]:
        """Build every layer and return the components for ServiceContainer construction."""
        infra = self.build_infrastructure()
        adapters = self.build_adapters()
        ai = self.build_ai_components()
        app = self.build_application_components(infra, adapters, ai)

        return {
            "config": self.config,
            "database": infra.database,
            "session_repo": infra.session_repo,
            "reading_repo": infra.reading_repo,
            "weather_snapshot_repo": infra.weather_snapshot_repo,
            "zone_repo": infra.zone_repo,
            "audit_logger": infra.audit_logger,
            "device_client": adapters.device_client,
            "weather_service": adapters.weather_service,
            "llm_backend": ai.llm_backend,
            "watering_advisor": ai.watering_advisor,
            "decision_engine": app.decision_engine,
            "lifecycle_service": app.lifecycle_service,
            "watering_scheduler": app.watering_scheduler,
            "history_service": app.history_service,
        }
