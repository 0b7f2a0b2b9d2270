"""Attendance API — the device-facing session lifecycle endpoints."""
import logging

from fastapi import APIRouter, Request

from schemas.api import HeartbeatRequest, LoginRequest, LogoutRequest, VerifySessionRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["attendance"])


@router.post("/auth/login")
async def login(req: LoginRequest, request: Request):
    engine = request.app.state.engine
    result = await engine.login(
        req.username,
        req.password,
        req.device_id,
        req.location.to_fix(),
        validate_location=req.validate_location,
    )
    return result.to_body()


@router.post("/heartbeat")
async def heartbeat(req: HeartbeatRequest, request: Request):
    engine = request.app.state.engine
    result = await engine.heartbeat(
        req.session_id,
        req.device_id,
        req.location.to_fix(),
        validate_location=req.validate_location,
    )
    return result.to_body()


@router.post("/auth/logout")
async def logout(req: LogoutRequest, request: Request):
    engine = request.app.state.engine
    fix = req.location.to_fix() if req.location else None
    session = await engine.logout(req.session_id, req.device_id, fix)
    return {
        "ok": True,
        "message": "Logged out successfully",
        "sessionId": session.session_id,
        "status": session.status.value,
        "logoutAt": session.logout_at,
    }


@router.post("/auth/verify-session")
async def verify_session(req: VerifySessionRequest, request: Request):
    engine = request.app.state.engine
    result = await engine.verify_session(req.session_id)
    return result.to_body()
