from __future__ import annotations

import atexit
import logging
from typing import Any

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from app.blueprints.api.cron import cron_api
from app.blueprints.api.devices import devices_api
from app.blueprints.api.health import health_api
from app.blueprints.api.watering import watering_api
from app.config import load_config, setup_logging


def create_app(config_overrides: dict[str, Any] | None = None, *, container_overrides: dict[str, Any] | None = None) -> Flask:
    """Build the Flask app.

    ``config_overrides`` sets AppConfig attributes by name; ``container_overrides``
    is passed to :meth:`ServiceContainer.build` (``clock``, ``device_client``,
    ``weather_service``, ``llm_backend``).
    """
    config = load_config()
    if config_overrides:
        for key, value in config_overrides.items():
            setattr(config, key, value)

    setup_logging(debug=config.DEBUG)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())
    flask_app.config["JSON_SORT_KEYS"] = False

    from app.services.container import ServiceContainer

    container = ServiceContainer.build(config, **(container_overrides or {}))
    flask_app.config["CONTAINER"] = container
    atexit.register(container.shutdown)

    # Global JSON error handler for /api/ routes; domain exceptions carry
    # their own ``http_status``.
    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        if not request.path.startswith("/api/"):
            raise exc
        from app.domain.exceptions import SmartWateringError
        from app.utils.http import domain_error_response, error_response, safe_error

        if isinstance(exc, HTTPException):
            status = int(exc.code or 500)
            if status >= 500:
                return safe_error(exc, status, context="http-exception")
            return error_response(exc.description or "Request failed", status)

        if isinstance(exc, SmartWateringError):
            return domain_error_response(exc, context="unhandled")

        return safe_error(exc, 500, context="unhandled")

    # ── API version prefix ──────────────────────────────────────────
    V1 = "/api/v1"

    flask_app.register_blueprint(cron_api, url_prefix=f"{V1}/cron")
    flask_app.register_blueprint(devices_api, url_prefix=f"{V1}/devices")
    flask_app.register_blueprint(health_api, url_prefix=f"{V1}/health")
    flask_app.register_blueprint(watering_api, url_prefix=V1)

    for bp_name in flask_app.blueprints:
        logging.info(" Registered blueprint: %s", bp_name)

    # ── Backward-compat: rewrite /api/* → /api/v1/* ─────────────
    # WSGI-level rewrite, transparent to clients (existing cron jobs keep working).
    _original_wsgi = flask_app.wsgi_app

    def _legacy_api_rewrite(environ, start_response):
        path = environ.get("PATH_INFO", "")
        if path.startswith("/api/") and not path.startswith("/api/v1/"):
            environ["PATH_INFO"] = "/api/v1" + path[4:]
        return _original_wsgi(environ, start_response)

    flask_app.wsgi_app = _legacy_api_rewrite  # type: ignore[assignment]

    logging.getLogger(__name__).info("Smart watering application initialized (%s zones).", len(config.zones))
    return flask_app


__all__ = ["create_app"]
