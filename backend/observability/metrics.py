"""Observability Metrics — reconciliation job counters.

In-process counters per job, plus live session counts read from the store.
Counters reset on restart; the store remains the source of truth.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class JobStats:
    runs: int = 0
    failures: int = 0
    sessions_processed: int = 0
    last_run_at: Optional[datetime] = None
    last_count: Optional[int] = None
    last_error: Optional[str] = None


class SweepMetrics:
    """Counters for the auto-logout, stale-sweep and daily-aggregation jobs."""

    def __init__(self):
        self._jobs: Dict[str, JobStats] = {}

    def _stats(self, job: str) -> JobStats:
        return self._jobs.setdefault(job, JobStats())

    def record_success(self, job: str, count: int) -> None:
        stats = self._stats(job)
        stats.runs += 1
        stats.sessions_processed += count
        stats.last_run_at = datetime.now(timezone.utc)
        stats.last_count = count
        stats.last_error = None

    def record_failure(self, job: str, error: BaseException) -> None:
        stats = self._stats(job)
        stats.runs += 1
        stats.failures += 1
        stats.last_run_at = datetime.now(timezone.utc)
        stats.last_error = f"{type(error).__name__}: {str(error)[:200]}"

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {job: asdict(stats) for job, stats in self._jobs.items()}


async def get_system_metrics(metrics: SweepMetrics, sessions) -> Dict[str, Any]:
    """Collect job counters and session counts by status."""
    by_status = await sessions.count_by_status()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessions": {
            "by_status": by_status,
            "live": by_status.get("active", 0) + by_status.get("suspect", 0),
            "total": sum(by_status.values()),
        },
        "jobs": metrics.snapshot(),
    }
