# adapters/external/database/mongo_client.py

from __future__ import annotations

from typing import Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from config import get_settings

_client: Optional[AsyncMongoClient] = None
_db: Optional[AsyncDatabase] = None


def get_mongo_client() -> AsyncMongoClient:
    """
    Return a singleton AsyncMongoClient configured from MONGO_URI.

    The client is created lazily and cached at module level so the API and
    the worker share one connection pool per process.
    """
    global _client
    if _client is None:
        uri = getattr(get_settings(), "MONGO_URI", None)
        if not uri:
            raise RuntimeError("MONGO_URI is not configured; cannot connect to MongoDB.")
        _client = AsyncMongoClient(uri, tz_aware=True)
    return _client


def get_mongo_db() -> AsyncDatabase:
    """
    Return the database named by MONGO_DB.
    """
    global _db
    if _db is None:
        db_name = getattr(get_settings(), "MONGO_DB", None)
        if not db_name:
            raise RuntimeError("MONGO_DB is not configured; cannot select a MongoDB database.")
        _db = get_mongo_client()[db_name]
    return _db


async def close_mongo_client() -> None:
    global _client, _db
    if _client is not None:
        await _client.close()
    _client = None
    _db = None
