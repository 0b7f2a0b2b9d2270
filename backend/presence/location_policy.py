"""Location policy — where a user may log in and keep heartbeating from.

Users with an allocated location must stay within the configured proximity
of it; everyone else must be inside any of their company's geofences.
"""
import logging
from typing import Optional

from config.settings import EngineConfig
from core.exceptions import (
    allocated_location_not_found,
    location_not_allowed,
    no_locations_configured,
    not_within_allocated_location,
)
from geo.geofence import distance_meters, within_any_location, within_radius
from schemas.directory import User
from schemas.session import GeoFix
from store.directory import DirectoryStore

logger = logging.getLogger(__name__)


def location_check_required(user: User, explicit: Optional[bool]) -> bool:
    """Admins are never fenced; an explicit request flag beats the user preference."""
    if user.is_admin:
        return False
    if explicit is not None:
        return explicit
    return user.location_validation_required


async def assert_location_allowed(
    user: User,
    fix: GeoFix,
    directory: DirectoryStore,
    config: EngineConfig,
) -> None:
    """Raise a LocationError unless ``fix`` satisfies the user's geofence."""
    point = fix.point

    if user.allocated_location_id:
        allocated = await directory.get_location(user.allocated_location_id)
        if allocated is None:
            logger.error(
                "Allocated location missing: user=%s location=%s",
                user.user_id, user.allocated_location_id,
            )
            raise allocated_location_not_found(user.allocated_location_id)

        proximity = config.location_proximity_meters
        if not within_radius(point, allocated.center, proximity):
            distance = distance_meters(point, allocated.center)
            logger.info(
                "Outside allocated location: user=%s location=%s distance=%.1fm limit=%gm",
                user.user_id, allocated.name, distance, proximity,
            )
            raise not_within_allocated_location(allocated.name, proximity, distance)
        return

    locations = await directory.list_company_locations(user.company_id)
    if not locations:
        logger.warning("No locations configured: company=%s", user.company_id)
        raise no_locations_configured()

    if not within_any_location(point, locations):
        logger.info("Outside company locations: user=%s company=%s", user.user_id, user.company_id)
        raise location_not_allowed([
            {"name": loc.name, "radiusMeters": loc.radius_meters} for loc in locations
        ])
