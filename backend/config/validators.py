"""Startup configuration validation guardrails."""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


logger = logging.getLogger(__name__)


def _require_positive_timings(settings) -> None:
    """Fail closed on timings that would make every session instantly stale."""
    timings = {
        "SESSION_TIMEOUT_HOURS": settings.SESSION_TIMEOUT_HOURS,
        "HEARTBEAT_MINUTES": settings.HEARTBEAT_MINUTES,
        "HEARTBEAT_GRACE_FACTOR": settings.HEARTBEAT_GRACE_FACTOR,
        "LOCATION_PROXIMITY_METERS": settings.LOCATION_PROXIMITY_METERS,
        "SUSPECT_POOR_HEARTBEAT_THRESHOLD": settings.SUSPECT_POOR_HEARTBEAT_THRESHOLD,
        "AUTO_LOGOUT_CHECK_MINUTES": settings.AUTO_LOGOUT_CHECK_MINUTES,
        "STALE_SWEEP_MINUTES": settings.STALE_SWEEP_MINUTES,
    }
    bad = [k for k, v in timings.items() if v is None or v <= 0]
    if bad:
        raise RuntimeError(
            f"STARTUP FAILED — these settings must be positive: {', '.join(bad)}"
        )


def _require_known_timezone(settings) -> None:
    try:
        ZoneInfo(settings.REPORTING_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        raise RuntimeError(
            f"STARTUP FAILED — REPORTING_TIMEZONE '{settings.REPORTING_TIMEZONE}' "
            "is not a known IANA timezone."
        )


def validate_startup_config(settings) -> None:
    """Centralized startup guardrails for required and warning-level config."""
    _require_positive_timings(settings)
    _require_known_timezone(settings)

    if not settings.INTERNAL_CRON_SECRET and not settings.CRON_SECRET:
        logger.warning(
            "CONFIG WARNING: neither INTERNAL_CRON_SECRET nor CRON_SECRET is set — "
            "manual cron triggers will be refused"
        )
    if settings.ENV == "prod" and not settings.SCHEDULER_ENABLED:
        logger.warning(
            "CONFIG WARNING: SCHEDULER_ENABLED is false — sessions are only "
            "reconciled through the internal cron endpoints"
        )
