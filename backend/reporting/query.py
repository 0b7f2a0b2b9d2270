"""Session Query Facade — read side for admin dashboards and payroll exports.

Never mutates sessions. Durations come from ``worked_seconds`` when daily
aggregation has reconciled a record, otherwise from logout_at - login_at.
Live sessions report the time elapsed so far.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from config.settings import EngineConfig
from schemas.session import GeoFix, Session, SessionStatus
from store.sessions import SessionSearch, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
MAX_PAGE_SIZE = 500


def working_seconds(session: Session, now: datetime) -> int:
    closed = session.closed_seconds()
    if closed is not None:
        return closed
    return max(0, int((now - session.login_at).total_seconds()))


def _fix_body(fix: Optional[GeoFix]) -> Optional[Dict[str, Any]]:
    if fix is None:
        return None
    return {
        "lat": fix.lat,
        "lon": fix.lon,
        "accuracy": fix.accuracy,
        "locationStatus": fix.location_status,
    }


def session_record(session: Session, now: datetime) -> Dict[str, Any]:
    """Client-facing view of a session record."""
    return {
        "sessionId": session.session_id,
        "companyId": session.company_id,
        "userId": session.user_id,
        "deviceId": session.device_id,
        "status": session.status.value,
        "loginAt": session.login_at,
        "logoutAt": session.logout_at,
        "lastHeartbeat": session.last_heartbeat,
        "loginLocation": _fix_body(session.login_location),
        "logoutLocation": _fix_body(session.logout_location),
        "consecutivePoorHeartbeats": session.consecutive_poor_heartbeats,
        "splitFrom": session.split_from,
        "workingMinutes": working_seconds(session, now) // 60,
    }


@dataclass
class DailyTotal:
    day: date
    worked_seconds: int
    sessions: int

    def to_body(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "workedSeconds": self.worked_seconds,
            "workedMinutes": self.worked_seconds // 60,
            "sessions": self.sessions,
        }


class SessionQueryService:
    def __init__(self, config: EngineConfig, sessions: SessionStore, clock: Callable[[], datetime]):
        self.sessions = sessions
        self._clock = clock
        self.tz = ZoneInfo(config.reporting_timezone)

    def _local_day_start(self, day: date) -> datetime:
        return datetime.combine(day, time(0), tzinfo=self.tz).astimezone(timezone.utc)

    async def list_sessions(
        self,
        company_id: Optional[str] = None,
        user_id: Optional[str] = None,
        statuses: Iterable[SessionStatus] = (),
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """List sessions newest first.

        With no dates and no status filter the window is every live session
        plus whatever logged in during the last 30 days.
        """
        now = self._clock()
        search = SessionSearch(
            company_id=company_id,
            user_id=user_id,
            statuses=frozenset(statuses),
            login_from=date_from,
            login_to=date_to,
        )
        if not (date_from or date_to or search.statuses):
            search.live_or_since = now - timedelta(days=DEFAULT_WINDOW_DAYS)

        limit = max(1, min(limit, MAX_PAGE_SIZE))
        skip = max(0, skip)
        total, page = await self.sessions.search(search, skip=skip, limit=limit)
        logger.debug("Session query: %s total=%d returned=%d", search, total, len(page))
        return {
            "ok": True,
            "total": total,
            "skip": skip,
            "limit": limit,
            "sessions": [session_record(s, now) for s in page],
        }

    async def daily_worked_seconds(self, user_id: str, start: date, end: date) -> List[DailyTotal]:
        """Closed working time per local calendar day, ``start``..``end`` inclusive.

        Each record counts toward the day its login falls on; daily
        aggregation guarantees reconciled records never span midnight.
        """
        if end < start:
            return []
        records = await self.sessions.list_closed_for_user(
            user_id,
            self._local_day_start(start),
            self._local_day_start(end + timedelta(days=1)),
        )

        totals: "OrderedDict[date, DailyTotal]" = OrderedDict()
        for session in records:
            seconds = session.closed_seconds()
            if seconds is None:
                continue
            day = session.login_at.astimezone(self.tz).date()
            bucket = totals.setdefault(day, DailyTotal(day=day, worked_seconds=0, sessions=0))
            bucket.worked_seconds += seconds
            bucket.sessions += 1
        return list(totals.values())
