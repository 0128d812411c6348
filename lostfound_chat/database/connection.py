import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase


load_dotenv()

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _db
    uri = os.getenv("MONGODB_URI", "mongodb://localhost:27017/?replicaSet=rs0")
    db_name = os.getenv("MONGODB_DB", "lostfound")
    _client = AsyncIOMotorClient(uri, tz_aware=True)
    _db = _client[db_name]
    logger.info("MongoDB connected -> %s", db_name)


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("MongoDB is not connected; call connect_to_mongo() first")
    return _db


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


@asynccontextmanager
async def mongo_transaction(db: AsyncIOMotorDatabase) -> AsyncIterator[AsyncIOMotorClientSession]:
    # Multi-document transactions require a replica set or sharded cluster.
    async with await db.client.start_session() as session:
        async with session.start_transaction():
            yield session
