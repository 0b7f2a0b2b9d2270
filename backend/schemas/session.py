"""Session schemas — one record per login, plus the status enum."""
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterable, Optional
from pydantic import BaseModel, Field
import uuid

from core.exceptions import invalid_status_filter
from geo.geofence import Point


class SessionStatus(str, Enum):
    ACTIVE = "active"
    LOGGED_OUT = "logged_out"
    AUTO_LOGGED_OUT = "auto_logged_out"
    EXPIRED = "expired"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    SUSPECT = "suspect"


# Still bound to a device and expected to heartbeat.
LIVE_STATUSES: FrozenSet[SessionStatus] = frozenset({SessionStatus.ACTIVE, SessionStatus.SUSPECT})
TERMINAL_STATUSES: FrozenSet[SessionStatus] = frozenset(set(SessionStatus) - LIVE_STATUSES)

LIVE_STATUS_VALUES = sorted(s.value for s in LIVE_STATUSES)

_STATUS_ALIASES = {
    "logged-out": SessionStatus.LOGGED_OUT,
    "loggedout": SessionStatus.LOGGED_OUT,
    "logout": SessionStatus.LOGGED_OUT,
    "auto": SessionStatus.AUTO_LOGGED_OUT,
    "auto-logged-out": SessionStatus.AUTO_LOGGED_OUT,
    "autologout": SessionStatus.AUTO_LOGGED_OUT,
    "timeout": SessionStatus.HEARTBEAT_TIMEOUT,
    "heartbeat-timeout": SessionStatus.HEARTBEAT_TIMEOUT,
}


def parse_status_filter(raw: Optional[str]) -> FrozenSet[SessionStatus]:
    """Parse a comma-separated, case-insensitive status filter.

    Accepts enum values, the aliases above and ``live`` (active + suspect).
    Unknown tokens raise INVALID_STATUS_FILTER instead of being passed to the
    store. An empty or missing filter yields an empty set (no filtering).
    """
    if not raw:
        return frozenset()

    result = set()
    unknown = []
    for token in raw.split(","):
        token = token.strip().lower()
        if not token:
            continue
        if token == "live":
            result.update(LIVE_STATUSES)
            continue
        token_norm = token.replace(" ", "_")
        try:
            result.add(SessionStatus(token_norm))
            continue
        except ValueError:
            pass
        alias = _STATUS_ALIASES.get(token)
        if alias is None:
            unknown.append(token)
        else:
            result.add(alias)

    if unknown:
        raise invalid_status_filter(unknown, [s.value for s in SessionStatus] + ["live"] + sorted(_STATUS_ALIASES))
    return frozenset(result)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo returns naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GeoFix(BaseModel):
    """A client-reported position with its GPS accuracy in meters."""
    lat: float
    lon: float
    accuracy: float
    location_status: Optional[str] = None

    @property
    def point(self) -> Point:
        return Point(lat=self.lat, lon=self.lon)


class Session(BaseModel):
    """Represents one login of a user from a device."""
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: Optional[str] = None
    user_id: str
    device_id: str
    login_at: datetime
    logout_at: Optional[datetime] = None
    login_location: GeoFix
    logout_location: Optional[GeoFix] = None
    last_heartbeat: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    consecutive_poor_heartbeats: int = 0
    worked_seconds: Optional[int] = None
    split_from: Optional[str] = None

    @property
    def live(self) -> bool:
        return self.status in LIVE_STATUSES

    def to_doc(self) -> dict:
        """Convert to MongoDB document."""
        d = self.model_dump()
        d["status"] = self.status.value
        d["live"] = self.live
        return d

    @classmethod
    def from_doc(cls, doc: dict) -> "Session":
        doc = dict(doc)
        doc.pop("_id", None)
        doc.pop("live", None)
        for key in ("login_at", "logout_at", "last_heartbeat"):
            doc[key] = as_utc(doc.get(key))
        return cls(**doc)

    def closed_seconds(self) -> Optional[int]:
        """Duration of a closed session, preferring the reconciled figure."""
        if self.worked_seconds is not None:
            return self.worked_seconds
        if self.logout_at is None:
            return None
        return max(0, int((self.logout_at - self.login_at).total_seconds()))
