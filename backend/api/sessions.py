"""Admin Sessions API — listing, daily totals and suspect review.

All endpoints require ``Authorization: Bearer <admin session id>``. Admins
bound to a company only ever see that company's sessions.
"""
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from auth.session_auth import require_admin
from core.exceptions import forbidden, session_not_found
from schemas.directory import User
from schemas.session import as_utc, parse_status_filter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


def _scoped_company(admin: User, requested: Optional[str]) -> Optional[str]:
    if admin.company_id is None:
        return requested
    if requested and requested != admin.company_id:
        raise forbidden("Admins can only view their own company's sessions.")
    return admin.company_id


@router.get("/sessions")
async def list_sessions(
    request: Request,
    company_id: Optional[str] = Query(None, alias="companyId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    status: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_admin),
):
    statuses = parse_status_filter(status)
    query = request.app.state.query
    return await query.list_sessions(
        company_id=_scoped_company(admin, company_id),
        user_id=user_id,
        statuses=statuses,
        date_from=as_utc(date_from),
        date_to=as_utc(date_to),
        skip=skip,
        limit=limit,
    )


@router.get("/sessions/daily")
async def daily_totals(
    request: Request,
    user_id: str = Query(..., alias="userId"),
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    admin: User = Depends(require_admin),
):
    if admin.company_id is not None:
        user = await request.app.state.engine.directory.get_user(user_id)
        if user is not None and user.company_id != admin.company_id:
            raise forbidden("Admins can only view their own company's sessions.")
    totals = await request.app.state.query.daily_worked_seconds(user_id, date_from, date_to)
    return {
        "ok": True,
        "userId": user_id,
        "timezone": request.app.state.query.tz.key,
        "days": [t.to_body() for t in totals],
    }


@router.post("/admin/sessions/{session_id}/resolve")
async def resolve_suspect(session_id: str, request: Request, admin: User = Depends(require_admin)):
    engine = request.app.state.engine
    if admin.company_id is not None:
        target = await engine.sessions.get(session_id)
        if target is None:
            raise session_not_found(status_code=404)
        if target.company_id != admin.company_id:
            raise forbidden("Admins can only resolve their own company's sessions.")
    session = await engine.resolve_suspect(session_id)
    logger.info("Suspect resolved by admin: session=%s admin=%s", session_id, admin.user_id)
    return {"ok": True, "sessionId": session.session_id, "status": session.status.value}
