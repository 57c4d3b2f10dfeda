"""
Child statistics service.

Single writer for the per-child ChildStats aggregate: total stars, streaks,
badges and completion counters. Every mutation is an atomic single-document
update; nothing here reads a value, changes it in Python and writes it back.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Any, List, Tuple

import pytz
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from common.utils.exceptions import ValidationException
from progress_engine.database.collections import CHILD_STATS
from progress_engine.services.rewards.ledger_service import StarLedgerService

logger = logging.getLogger(__name__)


COUNTER_FIELDS = (
    "totalLessonsCompleted",
    "totalLessonItemsCompleted",
    "totalActivitiesCompleted",
    "totalVideosWatched",
    "totalBooksRead",
    "totalChantsCompleted",
    "totalAudioAssignmentsCompleted",
    "totalExploreVideosWatched",
    "totalCoursesCompleted",
)

# Level thresholds must match the level badge criteria
LEVEL_THRESHOLDS: List[Tuple[int, str]] = [
    (1, "First Star"),
    (10, "Getting Started"),
    (25, "Star Beginner"),
    (50, "Rising Star"),
    (100, "Super Learner"),
    (250, "Star Collector"),
    (500, "Diamond Level"),
    (1000, "Champion"),
    (2500, "Mega Star"),
]


def calculate_level(total_stars: int) -> str:
    """Level name for a star total."""
    level = "New Learner"
    for threshold, name in LEVEL_THRESHOLDS:
        if total_stars >= threshold:
            level = name
    return level


def next_level(total_stars: int) -> Dict[str, Any]:
    """Next level and the stars still needed; level is None at the top."""
    for threshold, name in LEVEL_THRESHOLDS:
        if total_stars < threshold:
            return {"level": name, "starsNeeded": threshold - total_stars}
    return {"level": None, "starsNeeded": 0}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChildStatsService:
    """
    Owns the childstats collection. Other services call through here and
    never update the aggregate themselves.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        ledger_service: StarLedgerService,
        streak_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize ChildStatsService.

        Args:
            db: MongoDB database connection
            ledger_service: Ledger used for reconciliation
            streak_timezone: Timezone whose calendar days count for streaks
            clock: Returns the current aware datetime
        """
        self._db = db
        self._stats_collection = db[CHILD_STATS]
        self._ledger = ledger_service
        self._tz = pytz.timezone(streak_timezone)
        self._clock = clock

    def today(self) -> date:
        """Current calendar date in the streak timezone."""
        return self._clock().astimezone(self._tz).date()

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    async def get_or_create(self, child_id: str) -> Dict[str, Any]:
        """
        Get the stats document for a child, creating it on first need.
        """
        child_oid = ObjectId(child_id)
        now = _utcnow()
        defaults: Dict[str, Any] = {
            "childId": child_oid,
            "totalStars": 0,
            "currentStreak": 0,
            "longestStreak": 0,
            "lastActivityDate": None,
            "badges": [],
            "totalBadges": 0,
            "createdAt": now,
        }
        defaults.update({field: 0 for field in COUNTER_FIELDS})

        try:
            return await self._stats_collection.find_one_and_update(
                {"childId": child_oid},
                {"$setOnInsert": defaults},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Another request created it first
            return await self._stats_collection.find_one({"childId": child_oid})

    # ─────────────────────────────────────────────────────────────────
    # Stars & streaks
    # ─────────────────────────────────────────────────────────────────

    async def add_stars(self, child_id: str, amount: int) -> Dict[str, Any]:
        """
        Atomically add stars and record today's activity for the streak.

        Args:
            child_id: Child ID
            amount: Stars to add; 0 only touches the streak

        Returns:
            Updated stats document

        Raises:
            ValidationException: If amount is negative
        """
        if amount < 0:
            raise ValidationException(
                message="Cannot add a negative number of stars",
                code="INVALID_STARS",
            )

        await self.get_or_create(child_id)

        if amount > 0:
            stats = await self._stats_collection.find_one_and_update(
                {"childId": ObjectId(child_id)},
                {"$inc": {"totalStars": amount}, "$set": {"updatedAt": _utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            logger.info(f"Added {amount} stars to child {child_id}, total {stats['totalStars']}")

        return await self.update_streak(child_id)

    async def remove_stars(self, child_id: str, amount: int) -> Dict[str, Any]:
        """
        Subtract stars cancelled by a ledger reversal. Streaks are untouched.
        """
        if amount < 0:
            raise ValidationException(
                message="Cannot remove a negative number of stars",
                code="INVALID_STARS",
            )

        await self.get_or_create(child_id)
        stats = await self._stats_collection.find_one_and_update(
            {"childId": ObjectId(child_id)},
            {"$inc": {"totalStars": -amount}, "$set": {"updatedAt": _utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info(f"Removed {amount} stars from child {child_id}, total {stats['totalStars']}")
        return stats

    async def update_streak(self, child_id: str) -> Dict[str, Any]:
        """
        Record an activity today.

        Runs mutually exclusive conditional updates keyed on
        lastActivityDate, so two completions on the same day can only
        move the streak once.

        Returns:
            Updated stats document
        """
        child_oid = ObjectId(child_id)
        today = self.today()
        today_iso = today.isoformat()
        yesterday_iso = (today - timedelta(days=1)).isoformat()

        stats = await self._stats_collection.find_one_and_update(
            {"childId": child_oid, "lastActivityDate": yesterday_iso},
            {
                "$inc": {"currentStreak": 1},
                "$set": {"lastActivityDate": today_iso, "updatedAt": _utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )

        if stats is None:
            stats = await self._stats_collection.find_one_and_update(
                {"childId": child_oid, "lastActivityDate": {"$nin": [today_iso, yesterday_iso]}},
                {"$set": {"currentStreak": 1, "lastActivityDate": today_iso, "updatedAt": _utcnow()}},
                return_document=ReturnDocument.AFTER,
            )

        if stats is None:
            logger.debug(f"Streak for child {child_id} already counted for {today_iso}")
            return await self._stats_collection.find_one({"childId": child_oid})

        if stats["currentStreak"] > stats.get("longestStreak", 0):
            stats = await self._stats_collection.find_one_and_update(
                {"childId": child_oid},
                {"$max": {"longestStreak": stats["currentStreak"]}},
                return_document=ReturnDocument.AFTER,
            )

        logger.info(f"Streak for child {child_id}: {stats['currentStreak']} (longest {stats['longestStreak']})")
        return stats

    # ─────────────────────────────────────────────────────────────────
    # Badges & counters
    # ─────────────────────────────────────────────────────────────────

    async def add_badge(self, child_id: str, badge_id: str) -> bool:
        """
        Add a badge to the child's set.

        Returns:
            True if the badge was newly added, False if already held
        """
        await self.get_or_create(child_id)
        badge_oid = ObjectId(badge_id)

        result = await self._stats_collection.update_one(
            {"childId": ObjectId(child_id), "badges": {"$ne": badge_oid}},
            {
                "$push": {"badges": badge_oid},
                "$inc": {"totalBadges": 1},
                "$set": {"updatedAt": _utcnow()},
            },
        )
        added = result.modified_count == 1
        if added:
            logger.info(f"Badge {badge_id} added for child {child_id}")
        return added

    async def increment_counter(self, child_id: str, field: str, amount: int = 1) -> None:
        """
        Increment one of the per-category completion counters.

        Raises:
            ValidationException: If the counter name is unknown
        """
        if field not in COUNTER_FIELDS:
            raise ValidationException(message=f"Unknown stats counter: {field}", code="UNKNOWN_COUNTER")

        await self.get_or_create(child_id)
        await self._stats_collection.update_one(
            {"childId": ObjectId(child_id)},
            {"$inc": {field: amount}, "$set": {"updatedAt": _utcnow()}},
        )

    # ─────────────────────────────────────────────────────────────────
    # Reads & reconciliation
    # ─────────────────────────────────────────────────────────────────

    async def get_child_stats(self, child_id: str) -> Dict[str, Any]:
        """Get formatted stats with level information."""
        stats = await self.get_or_create(child_id)
        return self.format_stats(stats)

    async def reconcile(self, child_id: str, repair: bool = False) -> Dict[str, Any]:
        """
        Compare totalStars with the ledger balance.

        A mismatch means a crash between the ledger write and the stats
        update, or a bug. With repair=True the aggregate is shifted by the
        difference using $inc.

        Returns:
            dict with totalStars, ledgerBalance, difference, repaired
        """
        stats = await self.get_or_create(child_id)
        balance = await self._ledger.get_balance(child_id)
        difference = balance - stats.get("totalStars", 0)

        repaired = False
        if difference != 0:
            logger.warning(
                f"Stats mismatch for child {child_id}: totalStars={stats.get('totalStars', 0)} "
                f"ledger={balance}"
            )
            if repair:
                await self._stats_collection.update_one(
                    {"childId": ObjectId(child_id)},
                    {"$inc": {"totalStars": difference}, "$set": {"updatedAt": _utcnow()}},
                )
                repaired = True

        return {
            "childId": child_id,
            "totalStars": stats.get("totalStars", 0) + (difference if repaired else 0),
            "ledgerBalance": balance,
            "difference": difference,
            "repaired": repaired,
        }

    @staticmethod
    def format_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
        """Format stats document for response."""
        total_stars = stats.get("totalStars", 0)
        formatted = {
            "childId": str(stats["childId"]),
            "totalStars": total_stars,
            "currentStreak": stats.get("currentStreak", 0),
            "longestStreak": stats.get("longestStreak", 0),
            "lastActivityDate": stats.get("lastActivityDate"),
            "badges": [str(b) for b in stats.get("badges", [])],
            "totalBadges": stats.get("totalBadges", 0),
            "level": calculate_level(total_stars),
            "nextLevel": next_level(total_stars),
        }
        for field in COUNTER_FIELDS:
            formatted[field] = stats.get(field, 0)
        return formatted
