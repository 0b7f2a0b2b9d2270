"""Directory Store — read access to users, devices and locations.

CRUD for these collections lives in the admin tooling; the insert helpers
here exist for seeding dev/test databases.
"""
import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from schemas.directory import Company, Device, Location, User

logger = logging.getLogger(__name__)


def _strip_id(doc: dict) -> dict:
    doc.pop("_id", None)
    return doc


class DirectoryStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db

    async def get_user_by_username(self, username: str) -> Optional[User]:
        doc = await self._db.users.find_one({"username": username})
        return User(**_strip_id(doc)) if doc else None

    async def get_user(self, user_id: str) -> Optional[User]:
        doc = await self._db.users.find_one({"user_id": user_id})
        return User(**_strip_id(doc)) if doc else None

    async def get_location(self, location_id: str) -> Optional[Location]:
        doc = await self._db.locations.find_one({"location_id": location_id})
        return Location(**_strip_id(doc)) if doc else None

    async def list_company_locations(self, company_id: Optional[str]) -> List[Location]:
        if not company_id:
            return []
        docs = await self._db.locations.find({"company_id": company_id}).to_list(None)
        return [Location(**_strip_id(d)) for d in docs]

    async def touch_device(self, device_id: str, now: datetime) -> None:
        result = await self._db.devices.update_one(
            {"device_id": device_id},
            {"$set": {"last_seen": now}},
        )
        if result.matched_count == 0:
            logger.debug("Device not registered, last_seen not updated: device=%s", device_id)

    # ── Seeding ───────────────────────────────────────────────────

    async def insert_company(self, company: Company) -> Company:
        await self._db.companies.insert_one(company.to_doc())
        return company

    async def insert_user(self, user: User) -> User:
        await self._db.users.insert_one(user.to_doc())
        return user

    async def insert_device(self, device: Device) -> Device:
        await self._db.devices.insert_one(device.to_doc())
        return device

    async def insert_location(self, location: Location) -> Location:
        await self._db.locations.insert_one(location.to_doc())
        return location
