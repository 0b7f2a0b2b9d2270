"""Session Lifecycle Engine — login admission, heartbeat, logout, verify.

States:
  active ⇄ suspect          (live; suspect = still heartbeating, location mistrusted)
  live → logged_out | auto_logged_out | expired | heartbeat_timeout   (terminal)

Rules:
  - At most one live session per user (partial unique index backs this up)
  - A live session with a fresh heartbeat blocks a second login (409);
    a stale one is closed as heartbeat_timeout and the login proceeds
  - Every transition is a conditional write; a concurrent sweep or request
    that gets there first wins and the loser re-reads
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from pymongo.errors import DuplicateKeyError

from auth.passwords import verify_password_async
from config.settings import EngineConfig
from core.exceptions import (
    active_session_exists,
    device_mismatch,
    device_not_assigned,
    invalid_credentials,
    no_device_assigned,
    session_not_active,
    session_not_found,
)
from presence import rules
from presence.heartbeat import HeartbeatResult, record_heartbeat
from presence.location_policy import assert_location_allowed, location_check_required
from schemas.directory import User
from schemas.session import GeoFix, Session, SessionStatus
from store.directory import DirectoryStore
from store.sessions import SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PasswordVerifier = Callable[[str, str], Awaitable[bool]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LoginResult:
    session: Session
    user: User
    expires_in: int

    def to_body(self) -> dict:
        return {
            "ok": True,
            "sessionId": self.session.session_id,
            "expiresIn": self.expires_in,
            "companyId": self.user.company_id,
            "role": self.user.role.value,
        }


@dataclass
class VerifyResult:
    session: Session
    valid: bool
    expires_in: int

    def to_body(self) -> dict:
        return {
            "ok": True,
            "valid": self.valid,
            "sessionId": self.session.session_id,
            "status": self.session.status.value,
            "userId": self.session.user_id,
            "companyId": self.session.company_id,
            "expiresIn": self.expires_in,
            "lastHeartbeat": self.session.last_heartbeat,
        }


class SessionLifecycleEngine:
    def __init__(
        self,
        config: EngineConfig,
        sessions: SessionStore,
        directory: DirectoryStore,
        clock: Clock = utc_now,
        verify_password: PasswordVerifier = verify_password_async,
    ):
        self.config = config
        self.sessions = sessions
        self.directory = directory
        self._clock = clock
        self._verify_password = verify_password

    # ── Login ─────────────────────────────────────────────────────

    async def login(
        self,
        username: str,
        password: str,
        device_id: str,
        fix: GeoFix,
        validate_location: Optional[bool] = None,
    ) -> LoginResult:
        user = await self.directory.get_user_by_username(username)
        if user is None or not await self._verify_password(password, user.password_hash):
            logger.info("Login refused (credentials): username=%s", username)
            raise invalid_credentials()

        if not user.is_admin:
            if not user.assigned_device_id:
                logger.info("Login refused (no device assigned): user=%s", user.user_id)
                raise no_device_assigned()
            if user.assigned_device_id != device_id:
                logger.info(
                    "Login refused (device not assigned): user=%s device=%s",
                    user.user_id, device_id,
                )
                raise device_not_assigned()

        if location_check_required(user, validate_location):
            await assert_location_allowed(user, fix, self.directory, self.config)

        now = self._clock()
        await self._release_previous_session(user, now)

        session = Session(
            company_id=user.company_id,
            user_id=user.user_id,
            device_id=device_id,
            login_at=now,
            login_location=fix,
            last_heartbeat=now,
            status=SessionStatus.ACTIVE,
        )
        try:
            await self.sessions.insert(session)
        except DuplicateKeyError:
            # Lost a race with a concurrent login for the same user
            winner = await self.sessions.find_live_for_user(user.user_id)
            logger.warning("Concurrent login rejected: user=%s device=%s", user.user_id, device_id)
            raise active_session_exists(
                winner.session_id if winner else "",
                rules.grace_remaining_seconds(winner, now, self.config) if winner else 0,
            )

        await self.directory.touch_device(device_id, now)
        logger.info(
            "Session created: session=%s user=%s device=%s",
            session.session_id, user.user_id, device_id,
        )
        return LoginResult(session=session, user=user, expires_in=self.config.session_timeout_seconds)

    async def _release_previous_session(self, user: User, now: datetime) -> None:
        """Clear the way for a new session or refuse the login."""
        if user.is_admin:
            closed = await self.sessions.close_live_for_user(user.user_id, SessionStatus.AUTO_LOGGED_OUT, now)
            if closed:
                logger.info("Admin re-login closed %d session(s): user=%s", closed, user.user_id)
            return

        existing = await self.sessions.find_live_for_user(user.user_id)
        if existing is None:
            return

        if rules.is_hard_expired(existing, now, self.config):
            await self.sessions.transition(existing.session_id, SessionStatus.EXPIRED, now)
        elif rules.is_heartbeat_stale(existing, now, self.config):
            await self.sessions.transition(existing.session_id, SessionStatus.HEARTBEAT_TIMEOUT, now)
            logger.info(
                "Stale session superseded: session=%s user=%s",
                existing.session_id, user.user_id,
            )
        else:
            logger.info(
                "Login refused (active session): user=%s session=%s",
                user.user_id, existing.session_id,
            )
            raise active_session_exists(
                existing.session_id,
                rules.grace_remaining_seconds(existing, now, self.config),
            )

    # ── Heartbeat ─────────────────────────────────────────────────

    async def heartbeat(
        self,
        session_id: str,
        device_id: str,
        fix: GeoFix,
        validate_location: Optional[bool] = None,
    ) -> HeartbeatResult:
        return await record_heartbeat(
            session_id,
            device_id,
            fix,
            sessions=self.sessions,
            directory=self.directory,
            config=self.config,
            now=self._clock(),
            validate_location=validate_location,
        )

    # ── Logout ────────────────────────────────────────────────────

    async def logout(self, session_id: str, device_id: str, fix: Optional[GeoFix] = None) -> Session:
        session = await self.sessions.get(session_id)
        if session is None:
            raise session_not_found(status_code=404)
        if session.device_id != device_id:
            raise device_mismatch()
        if not session.live:
            raise session_not_active(session.status.value, status_code=400)

        now = self._clock()
        extra = {"logout_location": fix.model_dump()} if fix else None
        closed = await self.sessions.transition(session_id, SessionStatus.LOGGED_OUT, now, extra=extra)
        if closed is None:
            current = await self.sessions.get(session_id)
            raise session_not_active(current.status.value if current else "closed", status_code=400)

        await self.directory.touch_device(device_id, now)
        logger.info("Session logged out: session=%s user=%s", session_id, session.user_id)
        return closed

    # ── Verify ────────────────────────────────────────────────────

    async def verify_session(self, session_id: str) -> VerifyResult:
        """Report validity and remaining lifetime, expiring lazily on read."""
        session = await self.sessions.get(session_id)
        if session is None:
            raise session_not_found(status_code=404)

        now = self._clock()
        if session.live:
            to_status = None
            if rules.is_hard_expired(session, now, self.config):
                to_status = SessionStatus.EXPIRED
            elif rules.is_heartbeat_stale(session, now, self.config):
                to_status = SessionStatus.HEARTBEAT_TIMEOUT
            if to_status is not None:
                await self.sessions.transition(session_id, to_status, now)
                session = await self.sessions.get(session_id) or session

        valid = session.live
        expires_in = rules.remaining_seconds(session, now, self.config) if valid else 0
        return VerifyResult(session=session, valid=valid, expires_in=expires_in)

    # ── Admin override ────────────────────────────────────────────

    async def resolve_suspect(self, session_id: str) -> Session:
        """Explicitly clear a suspect flag after review."""
        now = self._clock()
        resolved = await self.sessions.transition(
            session_id,
            SessionStatus.ACTIVE,
            now,
            from_statuses=(SessionStatus.SUSPECT,),
            extra={"consecutive_poor_heartbeats": 0},
        )
        if resolved is None:
            current = await self.sessions.get(session_id)
            if current is None:
                raise session_not_found(status_code=404)
            raise session_not_active(current.status.value, status_code=409)
        logger.info("Suspect session resolved: session=%s", session_id)
        return resolved
