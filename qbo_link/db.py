# qbo_link/db.py
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection

from qbo_link.config import settings

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def get_client() -> AsyncIOMotorClient:
    """
    Returns a singleton AsyncIOMotorClient. Creates it if not already created.
    Datetimes come back timezone-aware so token expiries compare against UTC now.
    """
    global _client
    if _client is None:
        if not settings.mongo_uri:
            raise RuntimeError("MONGO_URI not set in environment")
        _client = AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)
    return _client


def get_database() -> AsyncIOMotorDatabase:
    """
    Returns the configured database object.
    """
    global _db
    if _db is None:
        if not settings.mongo_db_name:
            raise RuntimeError("MONGO_DB_NAME not set in environment")
        _db = get_client()[settings.mongo_db_name]
    return _db


def get_collection(name: str) -> AsyncIOMotorCollection:
    """
    Convenience to get a collection from the configured DB.
    Usage: tokens = get_collection('quickbooks_tokens'); await tokens.find_one({...})
    """
    return get_database()[name]


def close_client() -> None:
    """
    Close the motor client - call this on application shutdown.
    """
    global _client, _db
    if _client is not None:
        _client.close()
        _client = None
        _db = None


async def create_indexes() -> None:
    quickbooks_tokens = get_collection("quickbooks_tokens")
    await quickbooks_tokens.create_index("realm_id", unique=True)
    await quickbooks_tokens.create_index([("realm_id", 1), ("is_active", 1)])
