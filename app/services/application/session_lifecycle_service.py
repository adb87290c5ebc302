"""
Watering session lifecycle.

The only place sessions change state. Per zone:

    Idle --start--> Active --stop / reconcile_stale--> Idle

``start`` re-checks the store before commanding the tap and only records a
session after the tap acknowledged "on". ``stop`` only closes a session after
the tap acknowledged "off"; a timed-out stop is an error and the session stays
open. ``reconcile_stale`` closes abandoned sessions with an estimated duration
and never talks to the device.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from app.domain.exceptions import (
    ConflictError,
    DeviceError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from app.domain.watering import WateringSession, ZoneState
from app.enums import TriggerKind
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.config import ZoneConfig
    from app.services.hardware.device_client import SignedDeviceClient
    from infrastructure.database.repositories.base import SessionStore
    from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)

STARTED = "started"
ALREADY_ACTIVE = "already_active"
STOPPED = "stopped"
ALREADY_CLOSED = "already_closed"
IDLE = "idle"


@dataclass
class TransitionResult:
    """Outcome of a lifecycle operation."""

    outcome: str
    message: str
    session: WateringSession | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (STARTED, STOPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "message": self.message,
            "session": self.session.to_dict() if self.session else None,
        }


class SessionLifecycleService:
    """Start, stop and reconcile watering sessions against one session store."""

    def __init__(
        self,
        *,
        sessions: "SessionStore",
        device_client: "SignedDeviceClient",
        audit: "AuditLogger | None" = None,
        stale_estimate_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sessions = sessions
        self._device = device_client
        self._audit = audit
        self._stale_estimate = timedelta(minutes=stale_estimate_minutes)
        self._clock = clock

    def state(self, zone_id: str) -> ZoneState:
        return ZoneState(zone_id=zone_id, active_session=self._sessions.get_active(zone_id))

    def start(
        self,
        zone: "ZoneConfig",
        trigger: TriggerKind,
        scheduled_duration_minutes: int | None = None,
        *,
        weather_snapshot_id: int | None = None,
        actor: str = "system",
    ) -> TransitionResult:
        """Turn the zone's tap on and record the session.

        Raises DeviceError when the tap did not acknowledge (nothing recorded)
        and RepositoryError when the tap is on but the record failed.
        """
        if trigger.has_scheduled_end and not scheduled_duration_minutes:
            raise ValidationError(f"A {trigger} session needs a scheduled duration")
        if scheduled_duration_minutes is not None and scheduled_duration_minutes <= 0:
            raise ValidationError("Scheduled duration must be positive")

        active = self._sessions.get_active(zone.zone_id)
        if active is not None:
            logger.info("Zone %s already has active session %s", zone.zone_id, active.id)
            return TransitionResult(ALREADY_ACTIVE, "Watering already in progress", active)

        try:
            self._device.turn_on(zone.tap_device_id)
        except DeviceError as exc:
            self._audit_command(actor, zone.tap_device_id, True, "failure", error=str(exc))
            raise
        self._audit_command(actor, zone.tap_device_id, True, "success", zone_id=zone.zone_id)

        started_at = self._clock()
        scheduled_end_at = None
        if trigger.has_scheduled_end and scheduled_duration_minutes:
            scheduled_end_at = started_at + timedelta(minutes=scheduled_duration_minutes)

        try:
            session = self._sessions.create(
                zone_id=zone.zone_id,
                zone_name=zone.name,
                device_id=zone.tap_device_id,
                trigger=trigger,
                started_at=started_at,
                scheduled_end_at=scheduled_end_at,
                weather_snapshot_id=weather_snapshot_id,
            )
        except ConflictError:
            # A concurrent start won the insert; its session owns the running tap
            existing = self._sessions.get_active(zone.zone_id)
            logger.warning("Concurrent start for zone %s; reporting already active", zone.zone_id)
            self._audit_transition(actor, None, "start", "conflict", zone_id=zone.zone_id)
            return TransitionResult(ALREADY_ACTIVE, "Watering already in progress", existing)
        except RepositoryError:
            logger.error("Tap %s is ON but the session could not be recorded", zone.tap_device_id)
            self._audit_transition(actor, None, "start", "failure", zone_id=zone.zone_id)
            raise

        self._audit_transition(
            actor,
            session.id,
            "start",
            "success",
            zone_id=zone.zone_id,
            trigger=str(trigger),
            scheduled_end_at=scheduled_end_at,
        )
        return TransitionResult(STARTED, f"Watering started for zone {zone.zone_id}", session)

    def stop(self, session_id: int, *, end_reason: str = "manual", actor: str = "system") -> TransitionResult:
        """Turn the session's tap off and close it with the measured duration."""
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Watering session {session_id} not found")
        if not session.is_active:
            return TransitionResult(ALREADY_CLOSED, f"Session {session_id} is already closed", session)

        try:
            self._device.turn_off(session.device_id)
        except DeviceError as exc:
            self._audit_command(actor, session.device_id, False, "failure", session_id=session_id, error=str(exc))
            raise
        self._audit_command(actor, session.device_id, False, "success", session_id=session_id)

        ended_at = self._clock()
        duration = max(0, int(round((ended_at - session.started_at).total_seconds())))
        closed = self._sessions.close(
            session_id,
            ended_at=ended_at,
            duration_seconds=duration,
            end_reason=end_reason,
        )
        if not closed:
            return TransitionResult(ALREADY_CLOSED, f"Session {session_id} was closed concurrently", session)

        self._audit_transition(actor, session_id, "stop", "success", duration_seconds=duration, reason=end_reason)
        return TransitionResult(
            STOPPED,
            f"Watering stopped after {duration // 60} min",
            self._sessions.get(session_id),
        )

    def stop_active(self, zone_id: str, *, end_reason: str = "manual", actor: str = "system") -> TransitionResult:
        active = self._sessions.get_active(zone_id)
        if active is None:
            return TransitionResult(IDLE, f"Zone {zone_id} is not watering")
        return self.stop(active.id, end_reason=end_reason, actor=actor)

    def reconcile_stale(self, zone_id: str | None = None, *, max_age_hours: float = 4.0) -> list[WateringSession]:
        """Close sessions open longer than *max_age_hours* with the estimated duration."""
        now = self._clock()
        stale = self._sessions.list_stale(now - timedelta(hours=max_age_hours), zone_id)
        reconciled: list[WateringSession] = []
        for session in stale:
            ended_at = min(session.started_at + self._stale_estimate, now)
            duration = int((ended_at - session.started_at).total_seconds())
            if not self._sessions.close(
                session.id,
                ended_at=ended_at,
                duration_seconds=duration,
                end_reason="reconciled",
            ):
                continue
            logger.warning(
                "Reconciled stale session %s (zone %s, started %s) with estimated %ss",
                session.id,
                session.zone_id,
                session.started_at.isoformat(),
                duration,
            )
            self._audit_transition("reconciler", session.id, "reconcile", "success", duration_seconds=duration)
            closed = self._sessions.get(session.id)
            if closed is not None:
                reconciled.append(closed)
        return reconciled

    # -- audit --------------------------------------------------------------

    def _audit_command(self, actor: str, device_id: str, value: bool, outcome: str, **meta: Any) -> None:
        if self._audit is not None:
            self._audit.device_command(actor, device_id, "switch", value, outcome, **meta)

    def _audit_transition(self, actor: str, session_id: int | None, transition: str, outcome: str, **meta: Any) -> None:
        if self._audit is not None:
            self._audit.session_transition(actor, session_id, transition, outcome, **meta)
