"""Heartbeat tracking — presence verification.

Clients heartbeat every HEARTBEAT_MINUTES. A heartbeat is refused (and the
session closed) once the hard session lifetime is exceeded or the gap since
the previous heartbeat exceeds interval × grace factor. Accepted heartbeats
re-validate the geofence; fixes too coarse to trust are counted, and after
enough of them in a row the session is flagged suspect rather than ended.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config.settings import EngineConfig
from core.exceptions import (
    ErrorKind,
    LocationError,
    device_mismatch,
    heartbeat_timeout,
    session_expired,
    session_not_active,
    session_not_found,
)
from presence import rules
from presence.location_policy import assert_location_allowed, location_check_required
from schemas.session import GeoFix, Session, SessionStatus
from store.directory import DirectoryStore
from store.sessions import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class HeartbeatResult:
    session: Session
    suspect: bool = False
    poor_accuracy: bool = False

    def to_body(self) -> dict:
        body = {
            "ok": not self.suspect,
            "sessionId": self.session.session_id,
            "status": self.session.status.value,
            "lastHeartbeat": self.session.last_heartbeat,
        }
        if self.suspect:
            body["suspect"] = True
        if self.suspect or self.poor_accuracy:
            body["warning"] = ErrorKind.POOR_LOCATION_ACCURACY.value
            body["consecutivePoorHeartbeats"] = self.session.consecutive_poor_heartbeats
        return body


async def _closed_underneath(sessions: SessionStore, session_id: str) -> Exception:
    """A conditional write missed: report the status that beat us to it."""
    current = await sessions.get(session_id)
    if current is None:
        return session_not_found()
    return session_not_active(current.status.value)


async def record_heartbeat(
    session_id: str,
    device_id: str,
    fix: GeoFix,
    *,
    sessions: SessionStore,
    directory: DirectoryStore,
    config: EngineConfig,
    now: datetime,
    validate_location: Optional[bool] = None,
) -> HeartbeatResult:
    """Process one heartbeat. Raises a GeoAttendError subclass on refusal."""
    session = await sessions.get(session_id)
    if session is None:
        raise session_not_found()
    if session.device_id != device_id:
        logger.warning("Heartbeat device mismatch: session=%s device=%s", session_id, device_id)
        raise device_mismatch()
    if not session.live:
        raise session_not_active(session.status.value)

    if rules.is_hard_expired(session, now, config):
        await sessions.transition(session_id, SessionStatus.EXPIRED, now)
        logger.info("Session expired on heartbeat: session=%s", session_id)
        raise session_expired(config.session_timeout_hours)

    if rules.is_heartbeat_stale(session, now, config):
        await sessions.transition(session_id, SessionStatus.HEARTBEAT_TIMEOUT, now)
        age = rules.heartbeat_age_seconds(session, now)
        if age is None:
            age = (now - session.login_at).total_seconds()
        idle_minutes = int(age // 60)
        logger.info(
            "Heartbeat timeout: session=%s idle=%dmin window=%gmin",
            session_id, idle_minutes, config.heartbeat_timeout_minutes,
        )
        raise heartbeat_timeout(idle_minutes, config.heartbeat_timeout_minutes)

    user = await directory.get_user(session.user_id)
    if user is None:
        logger.error("Heartbeat for unknown user: session=%s user=%s", session_id, session.user_id)
        raise session_not_found()

    result: Optional[HeartbeatResult]
    if not location_check_required(user, validate_location):
        updated = await sessions.record_heartbeat(session_id, now, reset_accuracy=False)
        result = HeartbeatResult(updated) if updated else None

    elif fix.accuracy > config.location_proximity_meters:
        result = await _record_poor_fix(session_id, fix, sessions=sessions, config=config, now=now)

    else:
        try:
            await assert_location_allowed(user, fix, directory, config)
        except LocationError:
            # Accurate but outside the fence: the counter still resets,
            # liveness is not extended and the session stays open.
            await sessions.record_heartbeat(session_id, None, reset_accuracy=True)
            raise
        restored = session.status == SessionStatus.SUSPECT
        updated = await sessions.record_heartbeat(session_id, now, reset_accuracy=True)
        if updated and restored:
            logger.info("Suspect session restored to active: session=%s", session_id)
        result = HeartbeatResult(updated) if updated else None

    if result is None:
        raise await _closed_underneath(sessions, session_id)

    await directory.touch_device(device_id, now)
    logger.debug("Heartbeat recorded: session=%s status=%s", session_id, result.session.status.value)
    return result


async def _record_poor_fix(
    session_id: str,
    fix: GeoFix,
    *,
    sessions: SessionStore,
    config: EngineConfig,
    now: datetime,
) -> Optional[HeartbeatResult]:
    updated = await sessions.record_poor_heartbeat(session_id, now)
    if updated is None:
        return None

    count = updated.consecutive_poor_heartbeats
    logger.info(
        "Poor location accuracy: session=%s accuracy=%.0fm limit=%gm streak=%d",
        session_id, fix.accuracy, config.location_proximity_meters, count,
    )
    if count < config.suspect_poor_heartbeat_threshold:
        return HeartbeatResult(updated, poor_accuracy=True)

    if updated.status == SessionStatus.ACTIVE:
        flagged = await sessions.transition(
            session_id, SessionStatus.SUSPECT, now, from_statuses=(SessionStatus.ACTIVE,),
        )
        if flagged is None:
            current = await sessions.get(session_id)
            if current is None or not current.live:
                return None
            return HeartbeatResult(current, suspect=current.status == SessionStatus.SUSPECT, poor_accuracy=True)
        logger.warning("Session marked suspect: session=%s streak=%d", session_id, count)
        updated = flagged
    return HeartbeatResult(updated, suspect=True, poor_accuracy=True)
