"""
Progress record service.

Owns the progressrecords collection: one document per (child, content kind,
content id). Writes are guarded by a version field, so two writers racing on
the same record cannot lose each other's counter updates.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Dict, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from progress_engine.content import ContentRef
from progress_engine.database.collections import PROGRESS_RECORDS
from progress_engine.services.progress.completion_rules import (
    STATUS_NOT_STARTED,
    Transition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from MongoDB as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ProgressRecordService:
    """
    Reads and versioned writes of ProgressRecord documents.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        max_request_ids: int = 20,
        duplicate_window_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize ProgressRecordService.

        Args:
            db: MongoDB database connection
            max_request_ids: Client request ids remembered per record
            duplicate_window_seconds: Window for suppressing repeat counter
                interactions sent without a request id
            clock: Returns the current aware datetime
        """
        self._db = db
        self._records_collection = db[PROGRESS_RECORDS]
        self._max_request_ids = max_request_ids
        self._duplicate_window = timedelta(seconds=duplicate_window_seconds)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _key(child_id: str, ref: ContentRef) -> Dict[str, Any]:
        return {
            "childId": ObjectId(child_id),
            "contentKind": ref.kind.value,
            "contentId": ObjectId(ref.content_id),
        }

    async def get(self, child_id: str, ref: ContentRef) -> Optional[Dict[str, Any]]:
        """Get the record for a child and content unit, if any."""
        return await self._records_collection.find_one(self._key(child_id, ref))

    async def get_or_create(self, child_id: str, ref: ContentRef) -> Dict[str, Any]:
        """
        Get the record, creating a not-started one on first need.

        Concurrent creators converge on the same document through the
        unique (childId, contentKind, contentId) index.
        """
        key = self._key(child_id, ref)
        now = self.now()
        defaults = {
            **key,
            "status": STATUS_NOT_STARTED,
            "progressPercentage": 0,
            "score": None,
            "maxScore": None,
            "timeSpent": 0,
            "attempts": 0,
            "watchCount": 0,
            "watchHistory": [],
            "readingCount": 0,
            "readingsRewarded": 0,
            "recordedAudioRef": None,
            "metadata": {},
            "starsEarned": 0,
            "starsAwarded": False,
            "starsAwardedAt": None,
            "counted": False,
            "rewardCycle": 0,
            "processedRequestIds": [],
            "lastInteractionAt": None,
            "lastReadingAt": None,
            "startedAt": None,
            "completedAt": None,
            "version": 0,
            "createdAt": now,
        }

        try:
            return await self._records_collection.find_one_and_update(
                key,
                {"$setOnInsert": defaults},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            return await self._records_collection.find_one(key)

    # ─────────────────────────────────────────────────────────────────
    # Duplicate suppression
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def last_counted_at(record: Dict[str, Any]) -> Optional[datetime]:
        """When the record last gained a watch or a reading."""
        history = record.get("watchHistory") or []
        candidates = [record.get("lastReadingAt")]
        if history:
            candidates.append(history[-1].get("watchedAt"))
        moments = [as_utc(moment) for moment in candidates if moment]
        return max(moments) if moments else None

    def is_duplicate(
        self,
        record: Dict[str, Any],
        request_id: Optional[str],
        counted_event: bool,
    ) -> bool:
        """
        Whether an interaction repeats one already applied.

        A known request id is always a duplicate. Without a request id, a
        watch or reading arriving inside the window after the previous
        counted one is a double submit. Starts, time updates and other
        interactions never open the window.
        """
        if request_id:
            return request_id in record.get("processedRequestIds", [])

        if not counted_event:
            return False

        last = self.last_counted_at(record)
        if last is None:
            return False
        return self.now() - last < self._duplicate_window

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    async def apply_transition(
        self,
        record: Dict[str, Any],
        transition: Transition,
        request_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Persist a transition computed from `record`.

        Returns:
            The updated record, or None when the record changed since it
            was read (caller re-reads and recomputes)
        """
        updates = dict(transition.updates)
        updates["updatedAt"] = self.now()
        if request_id:
            seen = list(record.get("processedRequestIds", []))
            seen.append(request_id)
            updates["processedRequestIds"] = seen[-self._max_request_ids:]

        return await self._records_collection.find_one_and_update(
            {"_id": record["_id"], "version": record.get("version", 0)},
            {"$set": updates, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )

    async def mark_rewarded(
        self,
        record: Dict[str, Any],
        stars: int,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Record stars paid against a record.

        Only applies while the reward flags still match `record`, so two
        settlements computed from the same snapshot count the stars once.

        Args:
            record: Record the owed rewards were computed from
            stars: Stars written to the ledger for those rewards
            fields: Reward flags to set (starsAwarded, readingsRewarded...)

        Returns:
            The updated record, or the current one when another
            settlement flagged it first
        """
        updated = await self._records_collection.find_one_and_update(
            {
                "_id": record["_id"],
                "starsAwarded": {"$ne": True},
                "readingsRewarded": record.get("readingsRewarded", 0),
            },
            {
                "$inc": {"starsEarned": stars, "version": 1},
                "$set": {**fields, "updatedAt": self.now()},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.info(f"Rewards for progress {record['_id']} already flagged by another request")
            return await self._records_collection.find_one({"_id": record["_id"]})
        return updated

    async def claim_counted(self, record_id: ObjectId) -> bool:
        """
        Flip the record's counted flag.

        Returns:
            True for exactly one caller per reward cycle; that caller bumps
            the stats counter and runs the completion side effects
        """
        result = await self._records_collection.update_one(
            {"_id": record_id, "counted": {"$ne": True}},
            {"$set": {"counted": True, "updatedAt": self.now()}},
        )
        return result.modified_count == 1

    async def release_counted(self, record_id: ObjectId) -> None:
        """Give back a claim whose completion side effects did not finish."""
        await self._records_collection.update_one(
            {"_id": record_id, "counted": True},
            {"$set": {"counted": False, "updatedAt": self.now()}},
        )
        logger.warning(f"Released completion claim on progress {record_id}")

    async def reset(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a record to not_started and open a new reward cycle.

        Awards paid in earlier cycles keep their idempotency keys; the new
        cycle gets fresh ones, so re-completion pays again.
        """
        now = self.now()
        updated = await self._records_collection.find_one_and_update(
            {"_id": record["_id"]},
            {
                "$set": {
                    "status": STATUS_NOT_STARTED,
                    "progressPercentage": 0,
                    "score": None,
                    "maxScore": None,
                    "watchCount": 0,
                    "watchHistory": [],
                    "readingCount": 0,
                    "readingsRewarded": 0,
                    "recordedAudioRef": None,
                    "starsEarned": 0,
                    "starsAwarded": False,
                    "starsAwardedAt": None,
                    "counted": False,
                    "startedAt": None,
                    "completedAt": None,
                    "lastInteractionAt": None,
                    "lastReadingAt": None,
                    "resetAt": now,
                    "updatedAt": now,
                },
                "$inc": {"rewardCycle": 1, "version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        logger.info(
            f"Reset progress {record['_id']} ({record['contentKind']}:{record['contentId']}) "
            f"to cycle {updated['rewardCycle']}"
        )
        return updated

    @staticmethod
    def format_record(record: Dict[str, Any]) -> Dict[str, Any]:
        """Format progress record for response."""
        return {
            "id": str(record["_id"]),
            "childId": str(record["childId"]),
            "contentType": record["contentKind"],
            "contentId": str(record["contentId"]),
            "status": record["status"],
            "progressPercentage": record.get("progressPercentage", 0),
            "score": record.get("score"),
            "maxScore": record.get("maxScore"),
            "timeSpent": record.get("timeSpent", 0),
            "attempts": record.get("attempts", 0),
            "watchCount": record.get("watchCount", 0),
            "readingCount": record.get("readingCount", 0),
            "recordedAudioRef": record.get("recordedAudioRef"),
            "starsEarned": record.get("starsEarned", 0),
            "starsAwarded": record.get("starsAwarded", False),
            "rewardCycle": record.get("rewardCycle", 0),
            "startedAt": record.get("startedAt"),
            "completedAt": record.get("completedAt"),
            "lastInteractionAt": record.get("lastInteractionAt"),
        }
