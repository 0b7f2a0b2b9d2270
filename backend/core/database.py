"""MongoDB async connection manager.

Provides singleton client and database references.
Creates indexes on startup for the session and directory collections.
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from config.settings import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(settings.MONGO_URL, tz_aware=True)
    return _client


def get_db() -> AsyncIOMotorDatabase:
    global _db
    if _db is None:
        settings = get_settings()
        _db = get_client()[settings.DB_NAME]
    return _db


async def init_indexes(db: AsyncIOMotorDatabase | None = None) -> None:
    """Create required indexes. Idempotent."""
    db = db if db is not None else get_db()

    # Sessions: unique id, at most one live session per user
    await db.sessions.create_index("session_id", unique=True)
    await db.sessions.create_index(
        "user_id",
        name="one_live_session_per_user",
        unique=True,
        partialFilterExpression={"live": True},
    )
    await db.sessions.create_index([("user_id", 1), ("login_at", -1)])
    await db.sessions.create_index([("company_id", 1), ("login_at", -1)])
    await db.sessions.create_index([("status", 1), ("last_heartbeat", 1)])
    await db.sessions.create_index("login_at")
    await db.sessions.create_index("device_id")

    # Users: username unique per company, globally unique when companyless
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index([("company_id", 1), ("username", 1)], unique=True, sparse=True)
    await db.users.create_index(
        "username",
        name="companyless_username",
        unique=True,
        partialFilterExpression={"company_id": {"$exists": False}},
    )

    # Devices / locations
    await db.devices.create_index("device_id", unique=True)
    await db.devices.create_index("company_id")
    await db.locations.create_index("location_id", unique=True)
    await db.locations.create_index("company_id")

    logger.info("MongoDB indexes initialized")


async def close_db() -> None:
    global _client, _db
    if _client:
        _client.close()
        _client = None
        _db = None
        logger.info("MongoDB connection closed")
