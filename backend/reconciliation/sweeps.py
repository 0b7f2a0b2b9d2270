"""Reconciliation sweeps — server-side closing of sessions clients abandoned.

Jobs:
  - stale_heartbeat_sweep: live sessions whose heartbeat lapsed → auto_logged_out
  - auto_logout_sweep:     stale heartbeat OR past hard lifetime → auto_logged_out
  - daily_aggregation:     close every live session at its capped time, split
                           at local midnight so no record spans two days

Bulk sweeps are single filter-based update_many calls. Daily aggregation is
per-document because the split point depends on each record's login time.
All writes are conditional on the session still being live, so the jobs are
idempotent and safe to run alongside requests and each other.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, List, Tuple, TypeVar
from zoneinfo import ZoneInfo

from pymongo.errors import PyMongoError

from config.settings import EngineConfig
from observability.metrics import SweepMetrics
from presence import rules
from schemas.session import Session, SessionStatus
from store.sessions import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

JOB_AUTO_LOGOUT = "auto_logout"
JOB_STALE_SWEEP = "stale_heartbeat_sweep"
JOB_DAILY_AGGREGATION = "daily_aggregation"


@dataclass
class AggregationResult:
    closed_sessions: int = 0
    split_records: int = 0
    skipped: int = 0

    @property
    def count(self) -> int:
        return self.closed_sessions


def next_local_midnight(moment: datetime, tz: ZoneInfo) -> datetime:
    """First local midnight strictly after ``moment``, returned in UTC."""
    local_day: date = moment.astimezone(tz).date()
    midnight = datetime.combine(local_day + timedelta(days=1), time(0), tzinfo=tz)
    return midnight.astimezone(timezone.utc)


def plan_day_segments(start: datetime, end: datetime, tz: ZoneInfo) -> List[Tuple[datetime, datetime]]:
    """Cut [start, end] at every local midnight it crosses.

    >>> tz = ZoneInfo("UTC")
    >>> plan_day_segments(datetime(2024, 1, 1, 23, tzinfo=tz), datetime(2024, 1, 2, 2, tzinfo=tz), tz)
    [(... 23:00, ... 00:00), (... 00:00, ... 02:00)]
    """
    if end <= start:
        return [(start, start)]
    segments = []
    cursor = start
    while True:
        cut = next_local_midnight(cursor, tz)
        if cut >= end:
            segments.append((cursor, end))
            return segments
        segments.append((cursor, cut))
        cursor = cut


class ReconciliationService:
    def __init__(
        self,
        config: EngineConfig,
        sessions: SessionStore,
        metrics: SweepMetrics,
        clock: Callable[[], datetime],
    ):
        self.config = config
        self.sessions = sessions
        self.metrics = metrics
        self._clock = clock
        self.tz = ZoneInfo(config.reporting_timezone)

    async def _tracked(self, job: str, run: Callable[[], Awaitable[T]], count: Callable[[T], int]) -> T:
        try:
            result = await run()
        except Exception as e:
            self.metrics.record_failure(job, e)
            raise
        self.metrics.record_success(job, count(result))
        return result

    # ── Bulk sweeps ───────────────────────────────────────────────

    async def stale_heartbeat_sweep(self) -> int:
        """Close live sessions whose heartbeat is older than the grace window."""
        async def run() -> int:
            now = self._clock()
            closed = await self.sessions.close_lapsed(
                SessionStatus.AUTO_LOGGED_OUT,
                now,
                heartbeat_before=now - rules.heartbeat_window(self.config),
            )
            if closed:
                logger.info("[Reconcile] Stale sweep auto-logged out %d session(s)", closed)
            else:
                logger.debug("[Reconcile] Stale sweep: nothing to close")
            return closed

        return await self._tracked(JOB_STALE_SWEEP, run, lambda n: n)

    async def auto_logout_sweep(self) -> int:
        """Close live sessions past their hard lifetime or with a lapsed heartbeat."""
        async def run() -> int:
            now = self._clock()
            closed = await self.sessions.close_lapsed(
                SessionStatus.AUTO_LOGGED_OUT,
                now,
                heartbeat_before=now - rules.heartbeat_window(self.config),
                login_before=now - rules.session_lifetime(self.config),
            )
            if closed:
                logger.info("[Reconcile] Auto-logged out %d session(s)", closed)
            else:
                logger.debug("[Reconcile] No sessions to auto-logout")
            return closed

        return await self._tracked(JOB_AUTO_LOGOUT, run, lambda n: n)

    # ── Daily aggregation ─────────────────────────────────────────

    async def daily_aggregation(self) -> AggregationResult:
        """Close every live session at its capped time, one record per local day."""
        return await self._tracked(JOB_DAILY_AGGREGATION, self._aggregate, lambda r: r.closed_sessions)

    async def _aggregate(self) -> AggregationResult:
        now = self._clock()
        result = AggregationResult()
        for session in await self.sessions.list_live():
            try:
                split = await self._close_and_split(session, now)
            except PyMongoError:
                logger.exception("[Reconcile] Daily aggregation failed: session=%s", session.session_id)
                result.skipped += 1
                continue
            if split is None:
                result.skipped += 1
                continue
            result.closed_sessions += 1
            result.split_records += split

        logger.info(
            "[Reconcile] Daily aggregation: closed=%d split_records=%d skipped=%d",
            result.closed_sessions, result.split_records, result.skipped,
        )
        return result

    async def _close_and_split(self, session: Session, now: datetime):
        """Returns the number of continuation records written, or None when
        the session was closed by someone else first.

        Continuations are written before the original is closed. A failure
        in between leaves the original live, and the next run rewrites the
        same continuation ids from a fresh plan.
        """
        close_at = rules.capped_close(session, now, self.config)
        segments = plan_day_segments(session.login_at, close_at, self.tz)

        continuations = [
            Session(
                session_id=f"{session.session_id}:{n}",
                company_id=session.company_id,
                user_id=session.user_id,
                device_id=session.device_id,
                login_at=seg_start,
                logout_at=seg_end,
                login_location=session.login_location,
                last_heartbeat=seg_end,
                status=SessionStatus.AUTO_LOGGED_OUT,
                worked_seconds=int((seg_end - seg_start).total_seconds()),
                split_from=session.session_id,
            )
            for n, (seg_start, seg_end) in enumerate(segments[1:], start=1)
        ]
        written = await self.sessions.save_continuations(session.session_id, continuations)

        first_start, first_end = segments[0]
        try:
            closed = await self.sessions.transition(
                session.session_id,
                SessionStatus.AUTO_LOGGED_OUT,
                first_end,
                extra={"worked_seconds": int((first_end - first_start).total_seconds())},
            )
        except PyMongoError:
            if written:
                await self._discard_continuations(session.session_id)
            raise
        if closed is None:
            if written:
                await self._discard_continuations(session.session_id)
            return None

        if written:
            logger.info(
                "[Reconcile] Split at local midnight: session=%s records=%d",
                session.session_id, written + 1,
            )
        return written

    async def _discard_continuations(self, parent_id: str) -> None:
        try:
            await self.sessions.delete_continuations(parent_id)
        except PyMongoError:
            logger.warning(
                "[Reconcile] Continuation cleanup failed, split_from=%s records may be orphaned: session=%s",
                parent_id, parent_id,
            )
