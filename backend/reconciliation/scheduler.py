"""Reconciliation Scheduler — runs the sweeps in the background.

Runs as background tasks inside the API process:
  - auto-logout sweep every AUTO_LOGOUT_CHECK_MINUTES
  - stale-heartbeat sweep every STALE_SWEEP_MINUTES
  - daily aggregation once the heartbeat window after each local midnight
    (REPORTING_TIMEZONE) has passed, so sessions still heartbeating across
    midnight have a close time past it and are split rather than cut short

A failing sweep is logged and retried on the next tick; it never takes the
loop down. The same jobs are reachable on demand via /internal/cron/*.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from presence import rules
from reconciliation.sweeps import (
    JOB_AUTO_LOGOUT,
    JOB_DAILY_AGGREGATION,
    JOB_STALE_SWEEP,
    ReconciliationService,
    next_local_midnight,
)

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 5
BACKOFF_SECONDS = 300


async def _run_forever(
    name: str,
    job: Callable[[], Awaitable[object]],
    next_delay: Callable[[], float],
):
    """Loop a job with auto-restart on failure."""
    logger.info("[SCHEDULER] %s loop started", name)
    consecutive_failures = 0
    while True:
        await asyncio.sleep(next_delay())
        try:
            await job()
            consecutive_failures = 0
        except Exception as e:
            consecutive_failures += 1
            logger.error(
                "[SCHEDULER] %s error (%d consecutive): %s",
                name, consecutive_failures, str(e)[:80],
                extra={"job": name},
            )
            if consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                logger.critical(
                    "[SCHEDULER] %s: %d consecutive failures — backing off %ds",
                    name, consecutive_failures, BACKOFF_SECONDS,
                    extra={"job": name},
                )
                await asyncio.sleep(BACKOFF_SECONDS)
                consecutive_failures = 0


class ReconciliationScheduler:
    def __init__(
        self,
        service: ReconciliationService,
        auto_logout_minutes: float,
        stale_sweep_minutes: float,
        clock: Callable[[], datetime],
    ):
        self.service = service
        self.auto_logout_minutes = auto_logout_minutes
        self.stale_sweep_minutes = stale_sweep_minutes
        self._clock = clock
        self._tasks: List[asyncio.Task] = []
        self._daily_target: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def next_daily_run(self, after: datetime) -> datetime:
        """First local midnight plus heartbeat window strictly after ``after``."""
        offset = rules.heartbeat_window(self.service.config)
        return next_local_midnight(after - offset, self.service.tz) + offset

    def seconds_until_daily_run(self) -> float:
        """Advance the daily target and return the wait for it.

        The target moves on from the previous one, never from a clock that
        woke slightly early, so each day runs once.
        """
        now = self._clock()
        after = now if self._daily_target is None else max(self._daily_target, now)
        self._daily_target = self.next_daily_run(after)
        return max(0.0, (self._daily_target - now).total_seconds())

    def start(self) -> None:
        if self.running:
            return
        auto_logout = self.auto_logout_minutes * 60
        stale = self.stale_sweep_minutes * 60
        self._tasks = [
            asyncio.create_task(
                _run_forever(JOB_AUTO_LOGOUT, self.service.auto_logout_sweep, lambda: auto_logout),
                name="reconcile-auto-logout",
            ),
            asyncio.create_task(
                _run_forever(JOB_STALE_SWEEP, self.service.stale_heartbeat_sweep, lambda: stale),
                name="reconcile-stale-sweep",
            ),
            asyncio.create_task(
                _run_forever(JOB_DAILY_AGGREGATION, self.service.daily_aggregation, self.seconds_until_daily_run),
                name="reconcile-daily-aggregation",
            ),
        ]
        logger.info(
            "[SCHEDULER] Reconciliation started: auto_logout=%gmin stale_sweep=%gmin daily=midnight+%gmin %s",
            self.auto_logout_minutes, self.stale_sweep_minutes, self.service.config.heartbeat_timeout_minutes,
            self.service.config.reporting_timezone,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("[SCHEDULER] Reconciliation stopped")
