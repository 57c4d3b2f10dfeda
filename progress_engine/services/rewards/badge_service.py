"""
Badge awarding service.

Awards the badge attached to a content unit, and badges whose criteria
are thresholds over the child's stats (stars, streak, completion counts).
Nothing in here may block progress recording: lookup failures are logged
and the award is skipped.
"""

import logging
from typing import Callable, Optional, Dict, Any, List

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from common.utils.exceptions import DependencyException
from progress_engine.database.collections import BADGES
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)


StatReader = Callable[[Dict[str, Any]], int]

# criteria.type -> value read from the stats document
CRITERIA_HANDLERS: Dict[str, StatReader] = {
    "total_stars": lambda stats: stats.get("totalStars", 0),
    "streak_days": lambda stats: stats.get("currentStreak", 0),
    "lessons_completed": lambda stats: stats.get("totalLessonsCompleted", 0),
    "activities_completed": lambda stats: stats.get("totalActivitiesCompleted", 0),
    "videos_watched": lambda stats: stats.get("totalVideosWatched", 0) + stats.get("totalExploreVideosWatched", 0),
    "books_read": lambda stats: stats.get("totalBooksRead", 0),
    "audio_assignments_completed": lambda stats: stats.get("totalAudioAssignmentsCompleted", 0),
    "chants_completed": lambda stats: stats.get("totalChantsCompleted", 0),
    "courses_completed": lambda stats: stats.get("totalCoursesCompleted", 0),
}


class BadgeService:
    """
    Awards badges through ChildStatsService.add_badge.
    """

    def __init__(self, db: AsyncIOMotorDatabase, stats_service: ChildStatsService):
        """
        Initialize BadgeService.

        Args:
            db: MongoDB database connection
            stats_service: Single writer of the child's badge set
        """
        self._db = db
        self._badges_collection = db[BADGES]
        self._stats = stats_service

    async def _find_badge(self, badge_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._badges_collection.find_one({"_id": ObjectId(badge_id)})
        except InvalidId:
            return None
        except PyMongoError as e:
            raise DependencyException(
                message="Badge lookup failed",
                code="BADGE_LOOKUP_FAILED",
                details={"badgeId": badge_id, "error": str(e)},
            )

    async def award_badge(self, child_id: str, badge_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Award one badge to a child.

        Returns:
            The badge summary when newly awarded, None when there was
            nothing to award, the badge is unknown or already held
        """
        if not badge_id:
            return None

        try:
            badge = await self._find_badge(badge_id)
        except DependencyException as e:
            logger.warning(f"Skipping badge {badge_id} for child {child_id}: {e.message}")
            return None

        if not badge or badge.get("isActive") is False:
            logger.warning(f"Badge {badge_id} not found, skipping badge award")
            return None

        added = await self._stats.add_badge(child_id, badge_id)
        if not added:
            return None

        logger.info(f"Awarded badge \"{badge.get('name')}\" to child {child_id}")
        return self.format_badge(badge)

    async def check_threshold_badges(self, child_id: str) -> List[Dict[str, Any]]:
        """
        Award every active threshold badge the child now qualifies for.

        Returns:
            List of newly awarded badge summaries
        """
        try:
            cursor = self._badges_collection.find({
                "isActive": {"$ne": False},
                "criteria.type": {"$in": list(CRITERIA_HANDLERS)},
            })
            badges = await cursor.to_list(length=200)
        except PyMongoError as e:
            logger.warning(f"Threshold badge lookup failed for child {child_id}: {e}")
            return []

        stats = await self._stats.get_or_create(child_id)
        held = {str(b) for b in stats.get("badges", [])}

        awarded = []
        for badge in sorted(badges, key=lambda b: b.get("criteria", {}).get("value", 0)):
            if str(badge["_id"]) in held:
                continue

            criteria = badge.get("criteria", {})
            reader = CRITERIA_HANDLERS[criteria["type"]]
            if reader(stats) >= criteria.get("value", 0):
                if await self._stats.add_badge(child_id, str(badge["_id"])):
                    logger.info(
                        f"Awarded {criteria['type']} badge \"{badge.get('name')}\" to child {child_id}"
                    )
                    awarded.append(self.format_badge(badge))

        return awarded

    @staticmethod
    def format_badge(badge: Dict[str, Any]) -> Dict[str, Any]:
        """Format badge for response."""
        return {
            "id": str(badge["_id"]),
            "name": badge.get("name"),
            "icon": badge.get("icon"),
            "category": badge.get("category"),
        }
