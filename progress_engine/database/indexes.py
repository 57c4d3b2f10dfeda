"""
Index setup for engine-owned collections.

The unique indexes are what make duplicate requests safe across workers:
a second insert for the same key fails with DuplicateKeyError and the
caller falls back to the existing document.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel

from progress_engine.database.collections import (
    PROGRESS_RECORDS,
    STAR_EARNINGS,
    CHILD_STATS,
    COURSE_PROGRESS,
)

logger = logging.getLogger(__name__)


INDEXES = {
    PROGRESS_RECORDS: [
        IndexModel(
            [("childId", ASCENDING), ("contentKind", ASCENDING), ("contentId", ASCENDING)],
            unique=True,
            name="child_content_unique",
        ),
        IndexModel([("childId", ASCENDING), ("status", ASCENDING)], name="child_status"),
    ],
    STAR_EARNINGS: [
        IndexModel([("idempotencyKey", ASCENDING)], unique=True, name="idempotency_key_unique"),
        IndexModel([("childId", ASCENDING), ("createdAt", DESCENDING)], name="child_created"),
        IndexModel(
            [("childId", ASCENDING), ("source.type", ASCENDING), ("source.contentId", ASCENDING)],
            name="child_source",
        ),
    ],
    CHILD_STATS: [
        IndexModel([("childId", ASCENDING)], unique=True, name="child_unique"),
        IndexModel([("totalStars", DESCENDING)], name="total_stars"),
    ],
    COURSE_PROGRESS: [
        IndexModel(
            [("childId", ASCENDING), ("courseId", ASCENDING)],
            unique=True,
            name="child_course_unique",
        ),
        IndexModel([("childId", ASCENDING), ("status", ASCENDING)], name="child_status"),
    ],
}


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Create all engine indexes. Safe to run repeatedly.

    Args:
        db: MongoDB database connection
    """
    for collection_name, models in INDEXES.items():
        names = await db[collection_name].create_indexes(models)
        logger.info(f"Ensured indexes on {collection_name}: {names}")
