"""Request bodies for the REST API. Clients send camelCase keys."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.session import GeoFix


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationIn(ApiModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    accuracy: float = Field(ge=0)
    location_status: Optional[str] = None

    def to_fix(self) -> GeoFix:
        return GeoFix(
            lat=self.lat,
            lon=self.lon,
            accuracy=self.accuracy,
            location_status=self.location_status,
        )


class LoginRequest(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    location: LocationIn
    validate_location: Optional[bool] = None


class HeartbeatRequest(ApiModel):
    session_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    location: LocationIn
    validate_location: Optional[bool] = None


class LogoutRequest(ApiModel):
    session_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    location: Optional[LocationIn] = None


class VerifySessionRequest(ApiModel):
    session_id: str = Field(min_length=1)
