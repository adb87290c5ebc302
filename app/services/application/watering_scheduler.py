"""
Watering Scheduler Entry Points
===============================

Two stateless procedures driven by an external periodic trigger (HTTP cron
endpoint or the ``smart-watering-cron`` CLI):

- ``evaluate_and_start``: window gate, stale reconciliation, active-session
  check, sensor read and decision, tap online check, start.
- ``check_and_stop``: stop every open session whose scheduled end has passed,
  then reconcile stale sessions. Ignores the window gate.

Every call re-derives its state from the store and the devices, and returns a
:class:`SchedulerRunResult` with an ordered, timestamped log. Nothing is
raised past these methods.

Usage:
    scheduler = container.watering_scheduler
    result = scheduler.evaluate_zones()          # all configured zones
    result = scheduler.check_and_stop()
    print(result.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from app.domain.exceptions import (
    DeviceApiError,
    DeviceAuthError,
    DeviceError,
    DeviceTransportError,
    RepositoryError,
    SensorReadError,
    SmartWateringError,
)
from app.domain.time_window import is_within_window
from app.enums import SchedulerAction, TriggerKind
from app.services.application.session_lifecycle_service import ALREADY_ACTIVE, STOPPED
from app.utils.time import to_local, utc_now

if TYPE_CHECKING:
    from app.config import ZoneConfig
    from app.services.application.decision_engine import DecisionEngine
    from app.services.application.session_lifecycle_service import SessionLifecycleService
    from app.services.hardware.device_client import SignedDeviceClient
    from infrastructure.database.repositories.base import SessionStore
    from infrastructure.database.repositories.watering import WeatherSnapshotRepository

logger = logging.getLogger(__name__)


class RunLog:
    """Ordered step log for one invocation.

    Each step goes to the module logger with a prefix and is kept as
    ``"<iso timestamp> - <message>"`` for the response body.
    """

    def __init__(self, prefix: str, clock: Callable[[], datetime] = utc_now):
        self.prefix = prefix
        self._clock = clock
        self.lines: list[str] = []

    def __call__(self, message: str, *args: Any) -> None:
        text = message % args if args else message
        logger.info("%s %s", self.prefix, text)
        self.lines.append(f"{self._clock().isoformat(timespec='seconds')} - {text}")


@dataclass
class SchedulerRunResult:
    success: bool
    action: SchedulerAction
    reason: str
    logs: list[str] = field(default_factory=list)
    zone_id: str | None = None
    decision: dict[str, Any] | None = None
    session: dict[str, Any] | None = None
    moisture: float | None = None
    error: str | None = None
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "action": str(self.action),
            "reason": self.reason,
            "logs": list(self.logs),
        }
        for key in ("zone_id", "decision", "session", "moisture", "error"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.details:
            payload["details"] = self.details
        return payload


class WateringScheduler:
    """Evaluate-and-start and check-and-stop over the configured zones."""

    def __init__(
        self,
        *,
        zones: list["ZoneConfig"],
        engine: "DecisionEngine",
        lifecycle: "SessionLifecycleService",
        device_client: "SignedDeviceClient",
        sessions: "SessionStore",
        weather_snapshots: "WeatherSnapshotRepository | None" = None,
        window_start_hour: int = 6,
        window_end_hour: int = 22,
        timezone: str = "UTC",
        stale_session_hours: float = 4.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.zones = zones
        self._engine = engine
        self._lifecycle = lifecycle
        self._device = device_client
        self._sessions = sessions
        self._snapshots = weather_snapshots
        self.window_start_hour = window_start_hour
        self.window_end_hour = window_end_hour
        self.timezone = timezone
        self.stale_session_hours = stale_session_hours
        self._clock = clock

    def get_zone(self, zone_id: str) -> "ZoneConfig | None":
        for zone in self.zones:
            if zone.zone_id == zone_id:
                return zone
        return None

    # ==================== Evaluate and start ====================

    def evaluate_zones(self, zone_id: str | None = None) -> SchedulerRunResult:
        """Evaluate one zone, or every configured zone when *zone_id* is None."""
        if zone_id is not None:
            zone = self.get_zone(zone_id)
            if zone is None:
                log = RunLog("[auto-water]", self._clock)
                log("Unknown zone %s", zone_id)
                return SchedulerRunResult(
                    success=False,
                    action=SchedulerAction.NONE,
                    reason=f"Unknown zone {zone_id}",
                    logs=log.lines,
                    zone_id=zone_id,
                    error="unknown_zone",
                )
            return self.evaluate_and_start(zone)

        if not self.zones:
            log = RunLog("[auto-water]", self._clock)
            log("No zones configured")
            return SchedulerRunResult(
                success=False,
                action=SchedulerAction.NONE,
                reason="No zones configured",
                logs=log.lines,
                error="no_zones",
            )
        if len(self.zones) == 1:
            return self.evaluate_and_start(self.zones[0])

        results = [self.evaluate_and_start(zone) for zone in self.zones]
        actions = {result.action for result in results}
        if SchedulerAction.STARTED in actions:
            action = SchedulerAction.STARTED
        elif SchedulerAction.SKIPPED in actions:
            action = SchedulerAction.SKIPPED
        else:
            action = SchedulerAction.NONE
        started = [r.zone_id for r in results if r.action == SchedulerAction.STARTED]
        failed = [r.zone_id for r in results if not r.success]
        reason = f"Evaluated {len(results)} zones; started: {', '.join(started) or 'none'}"
        if failed:
            reason += f"; failed: {', '.join(str(z) for z in failed)}"
        return SchedulerRunResult(
            success=not failed,
            action=action,
            reason=reason,
            logs=[f"[{r.zone_id}] {line}" for r in results for line in r.logs],
            details=[r.to_dict() for r in results],
        )

    def evaluate_and_start(self, zone: "ZoneConfig") -> SchedulerRunResult:
        """Decide whether *zone* needs water and start a session if it does."""
        log = RunLog("[auto-water]", self._clock)
        now = self._clock()
        log("Starting auto-water check for zone %s", zone.zone_id)

        def result(success: bool, action: SchedulerAction, reason: str, **extra: Any) -> SchedulerRunResult:
            return SchedulerRunResult(
                success=success,
                action=action,
                reason=reason,
                logs=log.lines,
                zone_id=zone.zone_id,
                **extra,
            )

        try:
            if not is_within_window(now, self.window_start_hour, self.window_end_hour, self.timezone):
                local = to_local(now, self.timezone)
                reason = (
                    f"Outside watering window ({self.window_start_hour:02d}:00-"
                    f"{self.window_end_hour:02d}:00 {self.timezone}), local time {local:%H:%M}"
                )
                log(reason)
                return result(True, SchedulerAction.SKIPPED, reason)

            for closed in self._lifecycle.reconcile_stale(zone.zone_id, max_age_hours=self.stale_session_hours):
                log("Closed stale session %s with estimated duration %ss", closed.id, closed.duration_seconds)

            active = self._lifecycle.state(zone.zone_id).active_session
            if active is not None:
                reason = f"Watering already active (session {active.id} since {active.started_at.isoformat()})"
                log(reason)
                return result(True, SchedulerAction.SKIPPED, reason, session=active.to_dict())

            evaluation = self._engine.evaluate(zone, now, log)
            decision = evaluation.decision
            moisture = evaluation.reading.moisture_percent
            if not decision.should_water:
                log("No watering needed")
                return result(
                    True,
                    SchedulerAction.NONE,
                    decision.reason,
                    decision=decision.to_dict(),
                    moisture=moisture,
                )

            try:
                tap = self._device.read_status(zone.tap_device_id)
            except (DeviceTransportError, DeviceApiError) as exc:
                reason = f"Tap {zone.tap_device_id} status unavailable: {exc}"
                log(reason)
                return result(
                    True,
                    SchedulerAction.SKIPPED,
                    reason,
                    decision=decision.to_dict(),
                    moisture=moisture,
                    error=str(exc),
                )
            if not tap.online:
                reason = f"Tap {zone.tap_device_id} is offline"
                log(reason)
                return result(
                    True,
                    SchedulerAction.SKIPPED,
                    reason,
                    decision=decision.to_dict(),
                    moisture=moisture,
                    error="device_offline",
                )

            snapshot_id = None
            if evaluation.weather is not None and self._snapshots is not None:
                try:
                    snapshot_id = self._snapshots.capture(evaluation.weather, now)
                except RepositoryError as exc:
                    log("Weather snapshot not saved: %s", exc)

            log("Turning on tap %s for %s minutes", zone.tap_device_id, decision.duration_minutes)
            transition = self._lifecycle.start(
                zone,
                TriggerKind.AUTOMATED,
                decision.duration_minutes,
                weather_snapshot_id=snapshot_id,
                actor="scheduler",
            )
            session = transition.session.to_dict() if transition.session else None
            if transition.outcome == ALREADY_ACTIVE:
                log("Another invocation started this zone first")
                return result(
                    True,
                    SchedulerAction.SKIPPED,
                    "Watering already active",
                    decision=decision.to_dict(),
                    moisture=moisture,
                    session=session,
                )

            log("Session %s started, scheduled to end at %s", session["id"], session["scheduled_end_at"])
            return result(
                True,
                SchedulerAction.STARTED,
                decision.reason,
                decision=decision.to_dict(),
                moisture=moisture,
                session=session,
            )

        except SensorReadError as exc:
            log("Sensor read failed: %s", exc)
            return result(False, SchedulerAction.NONE, "Sensor read failed", error=str(exc))
        except DeviceAuthError as exc:
            log("Device authentication failed: %s", exc)
            return result(False, SchedulerAction.NONE, "Device authentication failed", error=str(exc))
        except DeviceError as exc:
            log("Device call failed: %s", exc)
            return result(False, SchedulerAction.NONE, "Device call failed", error=str(exc))
        except SmartWateringError as exc:
            log("Auto-water failed: %s", exc)
            return result(False, SchedulerAction.NONE, str(exc) or "Auto-water failed", error=exc.__class__.__name__)
        except Exception as exc:
            logger.exception("Unexpected error during auto-water for zone %s", zone.zone_id)
            log("Unexpected error: %s", exc)
            return result(False, SchedulerAction.NONE, "Unexpected error", error=str(exc))

    # ==================== Check and stop ====================

    def check_and_stop(self) -> SchedulerRunResult:
        """Stop sessions whose scheduled end has passed, then reconcile stale ones."""
        log = RunLog("[water-check]", self._clock)
        now = self._clock()
        log("Checking for sessions due to stop")

        stopped: list[dict[str, Any]] = []
        failures: list[str] = []
        try:
            due = self._sessions.list_due(now)
            log("Found %s session(s) past their scheduled end", len(due))
            for session in due:
                try:
                    transition = self._lifecycle.stop(session.id, end_reason="scheduled", actor="scheduler")
                except SmartWateringError as exc:
                    failures.append(f"session {session.id}: {exc}")
                    log("Failed to stop session %s on %s: %s", session.id, session.device_id, exc)
                    continue
                if transition.outcome == STOPPED and transition.session is not None:
                    stopped.append(transition.session.to_dict())
                    log(
                        "Stopped session %s (zone %s) after %ss",
                        session.id,
                        session.zone_id,
                        transition.session.duration_seconds,
                    )
                else:
                    log("Session %s was already closed", session.id)

            reconciled = self._lifecycle.reconcile_stale(None, max_age_hours=self.stale_session_hours)
            for closed in reconciled:
                log("Closed stale session %s (zone %s) with estimated duration", closed.id, closed.zone_id)
        except Exception as exc:
            logger.exception("Unexpected error during water check")
            log("Unexpected error: %s", exc)
            return SchedulerRunResult(
                success=False,
                action=SchedulerAction.STOPPED if stopped else SchedulerAction.NONE,
                reason="Unexpected error",
                logs=log.lines,
                error=str(exc),
                details=stopped,
            )

        if stopped:
            action = SchedulerAction.STOPPED
            reason = f"Stopped {len(stopped)} session(s)"
        else:
            action = SchedulerAction.NONE
            reason = "No sessions due to stop"
        if reconciled:
            reason += f"; reconciled {len(reconciled)} stale session(s)"
        if failures:
            reason += f"; {len(failures)} stop(s) failed"

        return SchedulerRunResult(
            success=not failures,
            action=action,
            reason=reason,
            logs=log.lines,
            error="; ".join(failures) or None,
            details=stopped + [s.to_dict() for s in reconciled],
        )

    # ==================== Reconcile ====================

    def reconcile(self, zone_id: str | None = None) -> SchedulerRunResult:
        """Close stale sessions without touching any device."""
        log = RunLog("[reconcile]", self._clock)
        try:
            closed = self._lifecycle.reconcile_stale(zone_id, max_age_hours=self.stale_session_hours)
        except SmartWateringError as exc:
            log("Reconciliation failed: %s", exc)
            return SchedulerRunResult(
                success=False,
                action=SchedulerAction.NONE,
                reason="Reconciliation failed",
                logs=log.lines,
                zone_id=zone_id,
                error=str(exc),
            )
        for session in closed:
            log("Closed stale session %s (zone %s)", session.id, session.zone_id)
        if not closed:
            log("No stale sessions")
        return SchedulerRunResult(
            success=True,
            action=SchedulerAction.STOPPED if closed else SchedulerAction.NONE,
            reason=f"Reconciled {len(closed)} stale session(s)",
            logs=log.lines,
            zone_id=zone_id,
            details=[s.to_dict() for s in closed],
        )
