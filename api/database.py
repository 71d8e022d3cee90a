import os
import logging
from contextlib import asynccontextmanager

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "whs_case_db")

# Multi-document transactions need a replica set; standalone servers fall
# back to compensating writes in the approval engine.
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]


def convert_id(document):
    """Convert MongoDB _id to a string id field"""
    if document and "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


@asynccontextmanager
async def transaction():
    """
    Yield a client session bound to an open transaction, or None when
    transactions are disabled.

    Leaving the block with an exception aborts the transaction.
    """
    if not MONGO_TRANSACTIONS:
        yield None
        return

    async with await client.start_session() as session:
        async with session.start_transaction():
            yield session


async def create_indexes():
    """Indexes used by the approval workflow and case listings"""
    await db.Incidents.create_index([("team_id", 1), ("approval_status", 1)])
    await db.Incidents.create_index("user_id")
    await db.WorkerExceptions.create_index([("user_id", 1), ("is_active", 1)])
    await db.WorkerExceptions.create_index("team_id")
    await db.WorkerExceptions.create_index("clinician_id")
    await db.WorkerSchedules.create_index([("worker_id", 1), ("is_active", 1)])
    await db.Notifications.create_index([("user_id", 1), ("is_read", 1)])
    logger.info("Database indexes ensured on %s", DB_NAME)
