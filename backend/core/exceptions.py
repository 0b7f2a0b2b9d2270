"""Custom exception hierarchy for GeoAttend.

Every domain error carries a stable machine-readable code, an HTTP status
and enough structured context for the client to self-correct.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    DEVICE_NOT_ASSIGNED = "DEVICE_NOT_ASSIGNED"
    NO_DEVICE_ASSIGNED = "NO_DEVICE_ASSIGNED"
    ALLOCATED_LOCATION_NOT_FOUND = "ALLOCATED_LOCATION_NOT_FOUND"
    NOT_WITHIN_ALLOCATED_LOCATION = "NOT_WITHIN_ALLOCATED_LOCATION"
    NO_LOCATIONS_CONFIGURED = "NO_LOCATIONS_CONFIGURED"
    LOCATION_NOT_ALLOWED = "LOCATION_NOT_ALLOWED"
    ACTIVE_SESSION_EXISTS = "ACTIVE_SESSION_EXISTS"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    DEVICE_MISMATCH = "DEVICE_MISMATCH"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    HEARTBEAT_TIMEOUT = "HEARTBEAT_TIMEOUT"
    # Soft: reported as a heartbeat warning, never raised
    POOR_LOCATION_ACCURACY = "POOR_LOCATION_ACCURACY"
    INVALID_STATUS_FILTER = "INVALID_STATUS_FILTER"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GeoAttendError(Exception):
    """Base error."""
    def __init__(
        self,
        message: str,
        code: ErrorKind = ErrorKind.INTERNAL_ERROR,
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_body(self) -> Dict[str, Any]:
        body = {"ok": False, "message": self.message, "error": self.code.value}
        body.update(self.context)
        return body


class AuthError(GeoAttendError):
    """Credential and device-assignment failures at login."""


class LocationError(GeoAttendError):
    """Geofence failures — the client must move closer and retry."""


class SessionError(GeoAttendError):
    """Session lookup / ownership / state failures."""


class PresenceError(SessionError):
    """Liveness failures that terminate the session (expiry, heartbeat timeout)."""


class QueryError(GeoAttendError):
    """Malformed read-side filters."""


# ── Factories ───────────────────────────────────────────────────


def invalid_credentials() -> AuthError:
    return AuthError(
        "Invalid username or password. Please check your credentials and try again.",
        ErrorKind.INVALID_CREDENTIALS, 401,
    )


def device_not_assigned() -> AuthError:
    return AuthError(
        "You are not authorized to login from this device. "
        "Please use your assigned device or contact your administrator.",
        ErrorKind.DEVICE_NOT_ASSIGNED, 403,
    )


def no_device_assigned() -> AuthError:
    return AuthError(
        "No device has been assigned to your account. "
        "Please contact your administrator to assign a device.",
        ErrorKind.NO_DEVICE_ASSIGNED, 403,
    )


def allocated_location_not_found(location_id: str) -> LocationError:
    return LocationError(
        "Your allocated location could not be found. Please contact your administrator.",
        ErrorKind.ALLOCATED_LOCATION_NOT_FOUND, 500,
        {"allocatedLocationId": location_id},
    )


def not_within_allocated_location(name: str, meters: float, distance: float) -> LocationError:
    return LocationError(
        f"You must be within {meters:g} meters of {name} to continue. "
        "Please move closer to your assigned location.",
        ErrorKind.NOT_WITHIN_ALLOCATED_LOCATION, 403,
        {"locationName": name, "requiredProximityMeters": meters, "distanceMeters": round(distance, 1)},
    )


def no_locations_configured() -> LocationError:
    return LocationError(
        "No locations are configured for your company. "
        "Please contact your administrator to set up allowed locations.",
        ErrorKind.NO_LOCATIONS_CONFIGURED, 403,
    )


def location_not_allowed(allowed: list) -> LocationError:
    return LocationError(
        "You are not within any allowed location. "
        "Please move to one of your company's registered locations.",
        ErrorKind.LOCATION_NOT_ALLOWED, 403,
        {"allowedLocations": allowed},
    )


def active_session_exists(session_id: str, retry_after_seconds: int) -> SessionError:
    return SessionError(
        "You already have an active session on another device. "
        "Please logout there first.",
        ErrorKind.ACTIVE_SESSION_EXISTS, 409,
        {"activeSessionId": session_id, "retryAfterSeconds": retry_after_seconds},
    )


def session_not_found(status_code: int = 401) -> SessionError:
    return SessionError(
        "Session not found. Please login again.",
        ErrorKind.SESSION_NOT_FOUND, status_code,
    )


def device_mismatch() -> SessionError:
    return SessionError(
        "Device mismatch detected. Please login again from the correct device.",
        ErrorKind.DEVICE_MISMATCH, 403,
    )


def session_not_active(status: str, status_code: int = 401) -> SessionError:
    return SessionError(
        f"Your session is {status}. Please login again.",
        ErrorKind.SESSION_NOT_ACTIVE, status_code,
        {"status": status},
    )


def session_expired(hours: float) -> PresenceError:
    return PresenceError(
        f"Your session has exceeded the maximum duration of {hours:g} hours. Please login again.",
        ErrorKind.SESSION_EXPIRED, 401,
    )


def heartbeat_timeout(inactive_minutes: int, expected_interval_minutes: float) -> PresenceError:
    return PresenceError(
        f"Your session timed out due to inactivity (no heartbeat for {inactive_minutes} minutes). "
        "Please login again.",
        ErrorKind.HEARTBEAT_TIMEOUT, 401,
        {"inactiveMinutes": inactive_minutes, "expectedIntervalMinutes": expected_interval_minutes},
    )


def invalid_status_filter(tokens: list, allowed: list) -> QueryError:
    return QueryError(
        f"Unknown session status filter: {', '.join(tokens)}.",
        ErrorKind.INVALID_STATUS_FILTER, 400,
        {"invalid": tokens, "allowed": allowed},
    )


def unauthorized(message: str = "Authentication required.") -> AuthError:
    return AuthError(message, ErrorKind.UNAUTHORIZED, 401)


def forbidden(message: str = "Admin access required.") -> AuthError:
    return AuthError(message, ErrorKind.FORBIDDEN, 403)
