"""
Configuration for the Smart Watering engine
===========================================
Runtime settings for the device gateway, watering policy, weather and
advisory services, plus the logging setup shared by the web app and the
cron CLI.
"""

import json
import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


@dataclass
class ZoneConfig:
    """One watering zone: the tap that controls it and the sensor that reads it."""

    zone_id: str
    name: str
    tap_device_id: str
    sensor_device_id: str = ""
    plant_description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ZoneConfig":
        try:
            zone_id = str(data["zone_id"])
            tap_device_id = str(data["tap_device_id"])
        except KeyError as exc:
            raise ValueError(f"Zone definition is missing {exc.args[0]!r}") from None
        return cls(
            zone_id=zone_id,
            name=str(data.get("name") or zone_id),
            tap_device_id=tap_device_id,
            sensor_device_id=str(data.get("sensor_device_id") or ""),
            plant_description=str(data.get("plant_description") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "name": self.name,
            "tap_device_id": self.tap_device_id,
            "sensor_device_id": self.sensor_device_id,
            "plant_description": self.plant_description,
        }


def _load_zones() -> list[ZoneConfig]:
    """Read zones from SMARTWATER_ZONES (JSON list) or the single-zone variables."""
    raw = os.getenv("SMARTWATER_ZONES")
    if raw:
        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            raise ValueError("Environment variable SMARTWATER_ZONES must be a JSON list.") from None
        if not isinstance(items, list):
            raise ValueError("Environment variable SMARTWATER_ZONES must be a JSON list.")
        return [ZoneConfig.from_dict(item) for item in items]

    tap_device_id = os.getenv("SMARTWATER_TAP_DEVICE_ID", "")
    if not tap_device_id:
        return []
    zone_id = os.getenv("SMARTWATER_ZONE_ID", "garden")
    return [
        ZoneConfig(
            zone_id=zone_id,
            name=os.getenv("SMARTWATER_ZONE_NAME", "Garden"),
            tap_device_id=tap_device_id,
            sensor_device_id=os.getenv("SMARTWATER_SENSOR_DEVICE_ID", ""),
            plant_description=os.getenv("SMARTWATER_PLANT_DESCRIPTION", ""),
        )
    ]


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("SMARTWATER_ENV", "development"))
    secret_key: str = field(default_factory=lambda: os.getenv("SMARTWATER_SECRET_KEY", "SmartWaterDevSecretKey"))
    database_path: str = field(default_factory=lambda: os.getenv("SMARTWATER_DATABASE_PATH", "database/smartwater.db"))

    DEBUG: bool = field(default_factory=lambda: _env_bool("SMARTWATER_DEBUG", False))
    audit_log_path: str = field(default_factory=lambda: os.getenv("SMARTWATER_AUDIT_LOG_PATH", "logs/audit.log"))
    log_level: str = field(default_factory=lambda: os.getenv("SMARTWATER_LOG_LEVEL", "INFO"))

    # Device gateway (signed cloud API)
    device_api_endpoint: str = field(
        default_factory=lambda: os.getenv("SMARTWATER_DEVICE_API_ENDPOINT", "https://openapi.tuyaeu.com")
    )
    device_client_id: str = field(default_factory=lambda: os.getenv("SMARTWATER_DEVICE_CLIENT_ID", ""))
    device_client_secret: str = field(default_factory=lambda: os.getenv("SMARTWATER_DEVICE_CLIENT_SECRET", ""))
    device_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SMARTWATER_DEVICE_TIMEOUT_SECONDS", 10.0)
    )
    device_token_margin_seconds: int = field(
        default_factory=lambda: _env_int("SMARTWATER_DEVICE_TOKEN_MARGIN_SECONDS", 60)
    )

    zones: list[ZoneConfig] = field(default_factory=_load_zones)

    # Watering policy
    low_moisture_threshold: float = field(default_factory=lambda: _env_float("SMARTWATER_LOW_THRESHOLD", 50.0))
    very_dry_threshold: float = field(default_factory=lambda: _env_float("SMARTWATER_VERY_DRY_THRESHOLD", 25.0))
    default_duration_minutes: int = field(default_factory=lambda: _env_int("SMARTWATER_DEFAULT_DURATION", 30))
    very_dry_duration_minutes: int = field(default_factory=lambda: _env_int("SMARTWATER_VERY_DRY_DURATION", 45))
    min_duration_minutes: int = field(default_factory=lambda: _env_int("SMARTWATER_MIN_DURATION", 10))
    max_duration_minutes: int = field(default_factory=lambda: _env_int("SMARTWATER_MAX_DURATION", 45))
    max_sessions_per_day: int = field(default_factory=lambda: _env_int("SMARTWATER_MAX_SESSIONS_PER_DAY", 2))
    window_start_hour: int = field(default_factory=lambda: _env_int("SMARTWATER_WINDOW_START_HOUR", 6))
    window_end_hour: int = field(default_factory=lambda: _env_int("SMARTWATER_WINDOW_END_HOUR", 22))
    timezone: str = field(default_factory=lambda: os.getenv("SMARTWATER_TIMEZONE", "Europe/London"))
    stale_session_hours: float = field(default_factory=lambda: _env_float("SMARTWATER_STALE_SESSION_HOURS", 4.0))
    stale_session_estimate_minutes: int = field(
        default_factory=lambda: _env_int("SMARTWATER_STALE_ESTIMATE_MINUTES", 30)
    )
    history_limit: int = field(default_factory=lambda: _env_int("SMARTWATER_HISTORY_LIMIT", 10))
    history_days: int = field(default_factory=lambda: _env_int("SMARTWATER_HISTORY_DAYS", 7))

    # Weather provider (Open-Meteo compatible)
    weather_api_url: str = field(
        default_factory=lambda: os.getenv("SMARTWATER_WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast")
    )
    weather_latitude: float = field(default_factory=lambda: _env_float("SMARTWATER_LATITUDE", 51.5074))
    weather_longitude: float = field(default_factory=lambda: _env_float("SMARTWATER_LONGITUDE", -0.1278))
    weather_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SMARTWATER_WEATHER_TIMEOUT_SECONDS", 10.0)
    )

    # LLM Configuration
    # Provider: "none" (disabled), "openai", "anthropic"
    llm_provider: str = field(default_factory=lambda: os.getenv("LLM_PROVIDER", "none"))
    llm_api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", ""))
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    llm_base_url: str = field(default_factory=lambda: os.getenv("LLM_BASE_URL", ""))
    llm_max_tokens: int = field(default_factory=lambda: _env_int("LLM_MAX_TOKENS", 512))
    llm_temperature: float = field(default_factory=lambda: _env_float("LLM_TEMPERATURE", 0.3))
    llm_timeout: int = field(default_factory=lambda: _env_int("LLM_TIMEOUT", 30))

    # Shared secret for the scheduler trigger endpoints
    cron_secret: str = field(default_factory=lambda: os.getenv("CRON_SECRET", ""))

    # Default insecure secret key - used only for detection
    _DEFAULT_SECRET_KEY: str = field(default="SmartWaterDevSecretKey", init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # SECURITY: Fail fast if using default secret key in production
        if self.environment == "production" and self.secret_key == self._DEFAULT_SECRET_KEY:
            raise RuntimeError(
                "SECURITY ERROR: Cannot use default secret key in production!\n"
                "Set SMARTWATER_SECRET_KEY environment variable to a secure random value.\n"
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )

        for name in ("window_start_hour", "window_end_hour"):
            hour = getattr(self, name)
            if not 0 <= hour <= 24:
                raise ValueError(f"{name} must be between 0 and 24, got {hour}")

        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError(
                f"min_duration_minutes ({self.min_duration_minutes}) cannot exceed "
                f"max_duration_minutes ({self.max_duration_minutes})"
            )

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from None

    def get_zone(self, zone_id: str) -> ZoneConfig | None:
        for zone in self.zones:
            if zone.zone_id == zone_id:
                return zone
        return None

    @property
    def device_credentials_configured(self) -> bool:
        return bool(self.device_client_id and self.device_client_secret)

    def as_flask_config(self) -> dict[str, Any]:
        """Render configuration values for Flask application."""
        secret = self.secret_key or os.getenv("FLASK_SECRET_KEY", "")
        if not secret:
            raise RuntimeError(
                "Missing SMARTWATER_SECRET_KEY or FLASK_SECRET_KEY environment variable. "
                "Production systems must set an explicit secret key."
            )

        return {
            "ENV": self.environment,
            "SECRET_KEY": secret,
            "DATABASE_PATH": self.database_path,
            "AUDIT_LOG_PATH": self.audit_log_path,
            "DEBUG": self.DEBUG,
        }


# ==================== CONFIGURATION VALIDATION ====================


def validate_config(config: AppConfig) -> list[str]:
    """
    Check configuration readiness and return list of warnings.

    Args:
        config: AppConfig instance

    Returns:
        List of warning messages (empty if all valid)
    """
    warnings = []

    if not config.device_credentials_configured:
        warnings.append("Device gateway credentials are not set (SMARTWATER_DEVICE_CLIENT_ID/SECRET)")

    if not config.zones:
        warnings.append("No watering zones configured (SMARTWATER_ZONES or SMARTWATER_TAP_DEVICE_ID)")

    for zone in config.zones:
        if not zone.sensor_device_id:
            warnings.append(f"Zone {zone.zone_id} has no soil sensor; automated watering will fail closed")

    if not config.cron_secret:
        warnings.append("CRON_SECRET is not set; scheduler endpoints are unauthenticated")

    if config.very_dry_threshold >= config.low_moisture_threshold:
        warnings.append(
            f"Very-dry threshold ({config.very_dry_threshold}) is not below the low threshold "
            f"({config.low_moisture_threshold}); the very-dry duration will never apply"
        )

    return warnings


def setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root = logging.getLogger()
    root.setLevel(log_level)

    # Keep existing handlers but avoid adding duplicates when create_app is called multiple times
    has_console = any(getattr(h, "name", "") == "smartwater_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "smartwater_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "smartwater_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        os.makedirs("logs", exist_ok=True)
        file_handler = RotatingFileHandler(
            "logs/smartwater.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "smartwater_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"smartwater_console", "smartwater_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("SMARTWATER_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
    # urllib3 logs every connection to the device gateway at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    import logging

    config = AppConfig()
    logger = logging.getLogger("config_loader")
    for warning in validate_config(config):
        logger.warning(warning)
    return config
