import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from .config import DB_NAME

logger = logging.getLogger(__name__)

mongo_client: Optional[AsyncIOMotorClient] = None
mongo_db = None


def connect(url: str) -> None:
    global mongo_client, mongo_db
    if not url:
        raise RuntimeError("MONGO_URL is not set")
    mongo_client = AsyncIOMotorClient(url)
    mongo_db = mongo_client.get_default_database(DB_NAME)  # from URI path
    logger.info("Using MongoDB database %s", mongo_db.name)


def close() -> None:
    global mongo_client, mongo_db
    if mongo_client is not None:
        mongo_client.close()
    mongo_client = None
    mongo_db = None


def get_db():
    """FastAPI dependency returning the active database handle."""
    if mongo_db is None:
        raise RuntimeError("Database is not connected")
    return mongo_db


async def ensure_indexes(db) -> None:
    await db.users.create_index("google_id", unique=True)
    await db.habits.create_index([("user_id", 1), ("order", 1)])
    await db.tracking.create_index([("user_id", 1), ("habit_id", 1), ("date", 1)], unique=True)
    await db.tracking.create_index([("user_id", 1), ("date", 1)])
    await db.monthly_goals.create_index(
        [("user_id", 1), ("habit_id", 1), ("year", 1), ("month", 1)], unique=True
    )
    await db.monthly_habit_names.create_index(
        [("user_id", 1), ("habit_id", 1), ("year", 1), ("month", 1)], unique=True
    )
    # Several naps per day are allowed, so this one is not unique
    await db.sleep.create_index([("user_id", 1), ("date", 1), ("sleep_type", 1), ("nap_index", 1)])
