"""Presence rules — centralized liveness policy.

Pure functions over a session and an EngineConfig; shared by the
request-time engine and the reconciliation sweeps so both agree on what
"stale" and "expired" mean.
"""
from datetime import datetime, timedelta
from typing import Optional

from config.settings import EngineConfig
from schemas.session import Session


def heartbeat_window(config: EngineConfig) -> timedelta:
    """Tolerated gap between heartbeats (interval × grace factor)."""
    return timedelta(minutes=config.heartbeat_timeout_minutes)


def session_lifetime(config: EngineConfig) -> timedelta:
    return timedelta(hours=config.session_timeout_hours)


def hard_deadline(session: Session, config: EngineConfig) -> datetime:
    return session.login_at + session_lifetime(config)


def is_hard_expired(session: Session, now: datetime, config: EngineConfig) -> bool:
    return now > hard_deadline(session, config)


def heartbeat_age_seconds(session: Session, now: datetime) -> Optional[float]:
    if session.last_heartbeat is None:
        return None
    return (now - session.last_heartbeat).total_seconds()


def is_heartbeat_stale(session: Session, now: datetime, config: EngineConfig) -> bool:
    """A missing heartbeat counts as stale."""
    age = heartbeat_age_seconds(session, now)
    return age is None or age > heartbeat_window(config).total_seconds()


def remaining_seconds(session: Session, now: datetime, config: EngineConfig) -> int:
    """Seconds until the hard session timeout, floored at zero."""
    return max(0, int((hard_deadline(session, config) - now).total_seconds()))


def grace_remaining_seconds(session: Session, now: datetime, config: EngineConfig) -> int:
    """Seconds until the current heartbeat window lapses."""
    age = heartbeat_age_seconds(session, now)
    if age is None:
        return 0
    return max(0, int(heartbeat_window(config).total_seconds() - age))


def capped_close(session: Session, now: datetime, config: EngineConfig) -> datetime:
    """Closing time counted as worked: last sign of life, bounded by the
    session lifetime and the present, never before login."""
    last_seen = session.last_heartbeat or session.login_at
    close = min(last_seen, hard_deadline(session, config), now)
    return max(close, session.login_at)
