"""
Dev seed — one company, two office geofences, an employee and an admin.

Idempotent: skips the seed when the company already exists.

Run: cd /app/backend && python scripts/seed_dev.py
"""
import asyncio
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from auth.passwords import hash_password
from core.database import close_db, get_db, init_indexes
from schemas.directory import Company, Device, Location, Role, User
from store.directory import DirectoryStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("seed")

COMPANY_ID = "acme"
SEED_PASSWORD = os.environ.get("SEED_PASSWORD", "change-me")


async def seed() -> None:
    db = get_db()
    await init_indexes(db)
    if await db.companies.find_one({"company_id": COMPANY_ID}):
        logger.info("Company %s already seeded, nothing to do", COMPANY_ID)
        return

    directory = DirectoryStore(db)
    password_hash = hash_password(SEED_PASSWORD)

    await directory.insert_company(Company(company_id=COMPANY_ID, name="Acme Field Services"))
    hq = await directory.insert_location(Location(
        location_id="loc-hq", company_id=COMPANY_ID, name="HQ",
        coordinates=[77.5946, 12.9716], radius_meters=100,
    ))
    await directory.insert_location(Location(
        location_id="loc-warehouse", company_id=COMPANY_ID, name="Warehouse",
        coordinates=[77.6408, 12.9784], radius_meters=250,
    ))
    await directory.insert_device(Device(device_id="dev-001", company_id=COMPANY_ID, name="Pixel 7", assigned_to="u-employee"))
    await directory.insert_user(User(
        user_id="u-employee", company_id=COMPANY_ID, username="employee",
        password_hash=password_hash, display_name="Field Employee",
        assigned_device_id="dev-001", allocated_location_id=hq.location_id,
    ))
    await directory.insert_user(User(
        user_id="u-admin", company_id=COMPANY_ID, username="admin",
        password_hash=password_hash, display_name="Site Admin", role=Role.ADMIN,
        location_validation_required=False,
    ))
    logger.info("Seeded company=%s with 2 locations, 1 device, 2 users", COMPANY_ID)


async def main() -> None:
    try:
        await seed()
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
