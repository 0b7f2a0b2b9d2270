"""Directory schemas — users, devices, locations and companies.

These records are provisioned by the admin tooling; the session lifecycle
only reads them (and touches ``Device.last_seen``).
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
import uuid

from geo.geofence import Point


class Role(str, Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"


class User(BaseModel):
    user_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: Optional[str] = None  # admins may exist before companies
    username: str
    password_hash: str
    display_name: str = ""
    role: Role = Role.EMPLOYEE
    assigned_device_id: Optional[str] = None
    allocated_location_id: Optional[str] = None
    location_validation_required: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_doc(self) -> dict:
        # companyless users must lack the field for the partial username index
        d = self.model_dump(exclude_none=True)
        d["role"] = self.role.value
        return d


class Device(BaseModel):
    device_id: str
    company_id: str
    name: str = ""
    assigned_to: Optional[str] = None
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_doc(self) -> dict:
        return self.model_dump()


class Location(BaseModel):
    """A circular geofence. Coordinates are stored GeoJSON-style as [lon, lat]."""
    location_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    name: str
    coordinates: List[float]
    radius_meters: float

    @property
    def center(self) -> Point:
        return Point(lat=self.coordinates[1], lon=self.coordinates[0])

    def to_doc(self) -> dict:
        return self.model_dump()


class CompanySettings(BaseModel):
    # Advisory only: the engine reads process-wide config.
    session_timeout_hours: float = 12
    heartbeat_minutes: float = 5


class Company(BaseModel):
    company_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    timezone: str = "Asia/Kolkata"
    settings: CompanySettings = Field(default_factory=CompanySettings)

    def to_doc(self) -> dict:
        return self.model_dump()
