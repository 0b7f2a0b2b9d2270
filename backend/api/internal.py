"""Internal API — on-demand triggers for the reconciliation jobs.

Called by an external cron (or an operator) alongside the in-process
scheduler. Guarded by a shared secret in either
``x-internal-cron-secret`` or ``Authorization: Bearer <secret>``.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from core.exceptions import GeoAttendError, ErrorKind, unauthorized
from observability.metrics import get_system_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


def _matches(candidate: Optional[str], secret: str) -> bool:
    return bool(candidate and secret) and hmac.compare_digest(candidate.encode(), secret.encode())


def verify_cron_secret(
    request: Request,
    x_internal_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    settings = request.app.state.settings
    internal, cron = settings.INTERNAL_CRON_SECRET, settings.CRON_SECRET
    if not internal and not cron:
        logger.error("Cron trigger refused: no cron secret configured")
        raise GeoAttendError("Cron secret is not configured.", ErrorKind.INTERNAL_ERROR, 500)

    bearer = authorization[7:].strip() if authorization and authorization.startswith("Bearer ") else None
    if _matches(x_internal_cron_secret, internal) or _matches(bearer, internal) or _matches(bearer, cron):
        return
    logger.warning("Cron trigger refused: bad secret path=%s", request.url.path)
    raise unauthorized("Invalid cron secret.")


@router.post("/cron/auto-logout", dependencies=[Depends(verify_cron_secret)])
async def cron_auto_logout(request: Request):
    count = await request.app.state.reconciliation.auto_logout_sweep()
    return {"ok": True, "autoLoggedOutCount": count}


@router.post("/cron/stale-sweep", dependencies=[Depends(verify_cron_secret)])
async def cron_stale_sweep(request: Request):
    count = await request.app.state.reconciliation.stale_heartbeat_sweep()
    return {"ok": True, "autoLoggedOutCount": count}


@router.post("/cron/daily-aggregate", dependencies=[Depends(verify_cron_secret)])
async def cron_daily_aggregate(request: Request):
    result = await request.app.state.reconciliation.daily_aggregation()
    return {
        "ok": True,
        "closedSessions": result.closed_sessions,
        "splitRecords": result.split_records,
    }


@router.post("/metrics", dependencies=[Depends(verify_cron_secret)])
async def internal_metrics(request: Request):
    state = request.app.state
    metrics = await get_system_metrics(state.metrics, state.engine.sessions)
    return {"ok": True, "metrics": metrics}
