"""Admin authentication — a live admin session id presented as a bearer token."""
import logging
from typing import Optional

from fastapi import Header, Request

from core.exceptions import GeoAttendError, forbidden, unauthorized
from schemas.directory import User

logger = logging.getLogger(__name__)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


async def require_admin(request: Request, authorization: Optional[str] = Header(None)) -> User:
    """FastAPI dependency: resolve the caller to an admin user or refuse."""
    session_id = _bearer(authorization)
    if session_id is None:
        raise unauthorized("Missing or invalid Authorization header")

    engine = request.app.state.engine
    try:
        verified = await engine.verify_session(session_id)
    except GeoAttendError:
        raise unauthorized("Session not found. Please login again.")
    if not verified.valid:
        raise unauthorized("Session is no longer active. Please login again.")

    user = await engine.directory.get_user(verified.session.user_id)
    if user is None or not user.is_admin:
        logger.info("Admin access refused: session=%s", session_id)
        raise forbidden()
    return user
