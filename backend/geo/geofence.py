"""Geofence evaluation — great-circle distance and containment tests."""
import math
from dataclasses import dataclass
from typing import Iterable, Protocol

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class Point:
    lat: float
    lon: float


class Fence(Protocol):
    center: Point
    radius_meters: float


def distance_meters(a: Point, b: Point) -> float:
    """Haversine distance between two points, in meters."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    h = min(1.0, h)  # float drift near antipodes
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_radius(point: Point, center: Point, radius_meters: float) -> bool:
    return distance_meters(point, center) <= radius_meters


def within_any_location(point: Point, locations: Iterable[Fence]) -> bool:
    """True if the point lies inside at least one fence, each with its own radius."""
    return any(within_radius(point, loc.center, loc.radius_meters) for loc in locations)
