from __future__ import annotations

import argparse
import json
import logging

from app.config import load_config, setup_logging
from app.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-watering-cron",
        description="Run one scheduler pass without starting the web server (for system cron).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    evaluate = sub.add_parser("evaluate", help="Evaluate zones and start watering where needed")
    evaluate.add_argument("--zone", default=None, help="Only evaluate this zone id")

    sub.add_parser("check", help="Stop sessions past their scheduled end, then reconcile stale ones")

    reconcile = sub.add_parser("reconcile", help="Close stale sessions with an estimated duration")
    reconcile.add_argument("--zone", default=None, help="Only reconcile this zone id")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one scheduler command and print its JSON result.

    Exit status is 0 when the run succeeded and 1 otherwise.
    """
    args = _build_parser().parse_args(argv)

    config = load_config()
    setup_logging(debug=config.DEBUG)

    container = ServiceContainer.build(config)
    scheduler = container.watering_scheduler
    try:
        if args.command == "evaluate":
            result = scheduler.evaluate_zones(args.zone)
        elif args.command == "check":
            result = scheduler.check_and_stop()
        else:
            result = scheduler.reconcile(args.zone)
    finally:
        container.shutdown()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        logger.warning("Scheduler command %s failed: %s", args.command, result.reason)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
