"""WSGI entry point for the smart watering service.

Serve ``smart_watering_app:app`` with any WSGI server, or run ``main()`` (the
``smart-watering`` console script) for the Flask development server. The cron
endpoints it exposes are meant to be hit by an external scheduler.
"""
from __future__ import annotations

import logging
import os

from app import create_app

app = create_app()


def _env_flag_true(name: str) -> bool:
    v = os.getenv(name)
    return bool(v and v.lower() in ("1", "true", "yes", "on"))


def main() -> int:
    host = os.getenv("SMARTWATER_HOST", "0.0.0.0")
    port = int(os.getenv("SMARTWATER_PORT", "8000"))
    debug = _env_flag_true("SMARTWATER_DEBUG")

    logging.info("Starting server on %s:%s", host, port)
    try:
        app.run(host=host, port=port, debug=debug, use_reloader=False)
        logging.info("Server stopped.")
        return 0
    except KeyboardInterrupt:
        logging.info("Server stopped by user.")
        return 0
    except OSError as exc:
        logging.exception("ERROR: Failed to start server: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
