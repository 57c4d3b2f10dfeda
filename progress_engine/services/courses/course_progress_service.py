"""
Course progress service.

Tracks each child's progress through published courses. Course state is
derived from the child's completed ProgressRecords for the course items;
prerequisites and the in-progress cap decide which courses are open, and
completing a course unlocks the next one.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Dict, Any, List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from common.utils.exceptions import NotFoundException, ValidationException
from progress_engine.content import ContentRef
from progress_engine.database.collections import COURSE_PROGRESS, PROGRESS_RECORDS
from progress_engine.services.content.catalog_service import ContentCatalogService, to_object_id
from progress_engine.services.courses.unlock_rules import (
    ACTIVE_STATUSES,
    COURSE_COMPLETED,
    COURSE_IN_PROGRESS,
    COURSE_LOCKED,
    COURSE_NOT_STARTED,
    apply_in_progress_cap,
    completed_steps,
    compute_course_status,
    compute_current_step,
    course_items,
    find_item,
    progress_percentage,
    required_counts,
    sort_courses,
)
from progress_engine.services.progress.completion_rules import STATUS_COMPLETED
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CourseProgressService:
    """
    Owns the courseprogress collection.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        catalog: ContentCatalogService,
        stats_service: ChildStatsService,
        max_in_progress: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize CourseProgressService.

        Args:
            db: MongoDB database connection
            catalog: Course lookups
            stats_service: Receives totalCoursesCompleted increments
            max_in_progress: Courses a child may work on at once
            clock: Returns the current aware datetime
        """
        self._db = db
        self._progress_collection = db[COURSE_PROGRESS]
        self._records_collection = db[PROGRESS_RECORDS]
        self._catalog = catalog
        self._stats = stats_service
        self._max_in_progress = max_in_progress
        self._clock = clock

    async def count_in_progress(self, child_id: str) -> int:
        """Courses the child is currently working on."""
        return await self._progress_collection.count_documents({
            "childId": ObjectId(child_id),
            "status": {"$in": list(ACTIVE_STATUSES)},
        })

    async def _find(self, child_id: str, course_id: str) -> Optional[Dict[str, Any]]:
        return await self._progress_collection.find_one({
            "childId": ObjectId(child_id),
            "courseId": to_object_id(course_id, "course id"),
        })

    # ─────────────────────────────────────────────────────────────────
    # Access checks
    # ─────────────────────────────────────────────────────────────────

    async def check_course_access(self, child_id: str, course: Dict[str, Any]) -> Dict[str, Any]:
        """
        Whether prerequisites of a sequential course are completed.

        Returns:
            dict with accessible, reason and missingPrerequisites
        """
        prerequisites = course.get("prerequisites") or []
        if not course.get("isSequential") or not prerequisites:
            return {"accessible": True, "reason": None, "missingPrerequisites": []}

        cursor = self._progress_collection.find({
            "childId": ObjectId(child_id),
            "courseId": {"$in": [ObjectId(p) for p in prerequisites]},
            "status": COURSE_COMPLETED,
        })
        done = {str(p["courseId"]) for p in await cursor.to_list(length=len(prerequisites))}
        missing = [str(p) for p in prerequisites if str(p) not in done]

        if not missing:
            return {"accessible": True, "reason": None, "missingPrerequisites": []}

        missing_courses = []
        for course_id in missing:
            try:
                prereq = await self._catalog.get_course(course_id)
            except NotFoundException:
                logger.warning(f"Prerequisite course {course_id} of {course['_id']} no longer exists")
                prereq = {}
            missing_courses.append({
                "id": course_id,
                "title": prereq.get("title"),
                "stepOrder": prereq.get("stepOrder"),
            })

        return {
            "accessible": False,
            "reason": "Prerequisites not completed",
            "missingPrerequisites": missing_courses,
        }

    # ─────────────────────────────────────────────────────────────────
    # Progress documents
    # ─────────────────────────────────────────────────────────────────

    async def get_or_create_course_progress(self, child_id: str, course_id: str) -> Dict[str, Any]:
        """
        Get the child's progress on a course, creating it on first need.

        New progress starts locked when prerequisites are unmet.
        """
        existing = await self._find(child_id, course_id)
        if existing:
            return existing

        course = await self._catalog.get_course(course_id)
        access = await self.check_course_access(child_id, course)
        return await self._create(
            child_id,
            course_id,
            COURSE_NOT_STARTED if access["accessible"] else COURSE_LOCKED,
        )

    async def _create(self, child_id: str, course_id: str, status: str) -> Dict[str, Any]:
        key = {"childId": ObjectId(child_id), "courseId": to_object_id(course_id, "course id")}
        now = self._clock()
        doc = {
            **key,
            "status": status,
            "progressPercentage": 0,
            "contentProgress": [],
            "completedSteps": [],
            "currentStep": 1,
            "startedAt": now if status == COURSE_IN_PROGRESS else None,
            "completedAt": None,
            "createdAt": now,
        }
        try:
            return await self._progress_collection.find_one_and_update(
                key,
                {"$setOnInsert": doc},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            return await self._progress_collection.find_one(key)

    async def _start(self, progress: Dict[str, Any]) -> Dict[str, Any]:
        updates = {"status": COURSE_IN_PROGRESS, "updatedAt": self._clock()}
        if not progress.get("startedAt"):
            updates["startedAt"] = self._clock()
        return await self._progress_collection.find_one_and_update(
            {"_id": progress["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    async def get_child_courses(self, child_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        All published courses with the child's status, in display order.

        Applies the in-progress cap and persists the resulting lock and
        unlock changes.
        """
        courses = sort_courses(await self._catalog.list_published_courses())

        cursor = self._progress_collection.find({"childId": ObjectId(child_id)})
        progress_map = {str(p["courseId"]): p for p in await cursor.to_list(length=len(courses) + 100)}

        entries = []
        for course in courses:
            progress = progress_map.get(str(course["_id"]))
            access = await self.check_course_access(child_id, course)
            if progress:
                current = progress["status"]
            else:
                current = COURSE_NOT_STARTED if access["accessible"] else COURSE_LOCKED
            entries.append({
                "course": course,
                "progress": progress,
                "status": current,
                "accessible": access["accessible"],
                "missingPrerequisites": access["missingPrerequisites"],
            })

        new_statuses = apply_in_progress_cap(entries, self._max_in_progress)

        items = []
        for entry, new_status in zip(entries, new_statuses):
            course_id = str(entry["course"]["_id"])
            progress = entry["progress"]

            if new_status != entry["status"] or (progress is None and new_status == COURSE_IN_PROGRESS):
                progress = await self._persist_status(child_id, course_id, progress, new_status)
                logger.info(f"Course {course_id} for child {child_id}: {entry['status']} -> {new_status}")

                if new_status == COURSE_IN_PROGRESS:
                    progress = await self._recompute(child_id, entry["course"], progress["_id"])
                    if progress["status"] == COURSE_COMPLETED:
                        # Finishing on start frees the cap and may unlock later courses
                        return await self.get_child_courses(child_id, status)

            items.append(self.format_child_course(entry["course"], progress, new_status, entry))

        if status:
            items = [item for item in items if item["status"] == status]
        return items

    async def _persist_status(
        self,
        child_id: str,
        course_id: str,
        progress: Optional[Dict[str, Any]],
        status: str,
    ) -> Dict[str, Any]:
        if progress is None:
            return await self._create(child_id, course_id, status)
        if status == COURSE_IN_PROGRESS:
            return await self._start(progress)
        return await self._progress_collection.find_one_and_update(
            {"_id": progress["_id"]},
            {"$set": {"status": status, "updatedAt": self._clock()}},
            return_document=ReturnDocument.AFTER,
        )

    # ─────────────────────────────────────────────────────────────────
    # Content completion
    # ─────────────────────────────────────────────────────────────────

    async def update_content_progress(self, child_id: str, course_id: str, ref: ContentRef) -> Dict[str, Any]:
        """
        Bring a course up to date after one of its units completed.

        Opens the course when it is not started yet, then recomputes it
        from the child's progress records. Units of a later step count
        as soon as they complete; only currentStep waits for the earlier
        steps.

        Returns:
            Formatted course progress

        Raises:
            ValidationException: If the unit is not in the course, the
                course is locked, or the cap is reached
        """
        course = await self._catalog.get_course(course_id)
        if not find_item(course, ref.kind.value, ref.content_id):
            raise ValidationException(message="Content not found in course", code="CONTENT_NOT_IN_COURSE")

        progress = await self._find(child_id, course_id)
        if progress is None or progress["status"] == COURSE_LOCKED:
            access = await self.check_course_access(child_id, course)
            if not access["accessible"]:
                raise ValidationException(
                    message="Course is locked. Complete prerequisites first.",
                    code="COURSE_LOCKED",
                )
            if await self.count_in_progress(child_id) >= self._max_in_progress:
                raise ValidationException(
                    message=f"Maximum {self._max_in_progress} course in progress. "
                            "Complete the current course before starting another.",
                    code="COURSE_LIMIT_REACHED",
                )
            if progress is None:
                progress = await self._create(child_id, course_id, COURSE_IN_PROGRESS)
            else:
                progress = await self._start(progress)
        elif progress["status"] == COURSE_NOT_STARTED:
            progress = await self._start(progress)

        progress = await self._recompute(child_id, course, progress["_id"])
        return self.format_progress(progress)

    async def _completed_items(self, child_id: str, course: Dict[str, Any]) -> Dict[Any, Dict[str, Any]]:
        """Completed progress records of the course items, by (contentKind, contentId)."""
        items = course_items(course)
        if not items:
            return {}

        cursor = self._records_collection.find({
            "childId": ObjectId(child_id),
            "contentId": {"$in": [ObjectId(item["contentId"]) for item in items]},
            "status": STATUS_COMPLETED,
        })
        records = await cursor.to_list(length=len(items) * 4)

        wanted = {(item["contentKind"], item["contentId"]) for item in items}
        by_key = {(r["contentKind"], str(r["contentId"])): r for r in records}
        return {key: record for key, record in by_key.items() if key in wanted}

    async def _recompute(self, child_id: str, course: Dict[str, Any], progress_id: ObjectId) -> Dict[str, Any]:
        progress = await self._progress_collection.find_one({"_id": progress_id})
        records = await self._completed_items(child_id, course)
        done = set(records)
        completed, total = required_counts(course, done)
        status = compute_course_status(course, done, progress["status"])
        now = self._clock()

        content_progress = [
            {
                "contentId": ObjectId(item["contentId"]),
                "contentKind": item["contentKind"],
                "step": item["step"],
                "status": COURSE_COMPLETED,
                "completedAt": records[(item["contentKind"], item["contentId"])].get("completedAt"),
            }
            for item in course_items(course)
            if (item["contentKind"], item["contentId"]) in records
        ]

        progress = await self._progress_collection.find_one_and_update(
            {"_id": progress_id},
            {"$set": {
                "contentProgress": content_progress,
                "progressPercentage": progress_percentage(completed, total),
                "completedSteps": completed_steps(course, done),
                "currentStep": compute_current_step(course, done),
                "lastAccessedAt": now,
                "updatedAt": now,
            }},
            return_document=ReturnDocument.AFTER,
        )

        if status == COURSE_COMPLETED and progress["status"] != COURSE_LOCKED:
            progress = await self._complete(child_id, str(course["_id"]), progress)
        return progress

    async def _complete(self, child_id: str, course_id: str, progress: Dict[str, Any]) -> Dict[str, Any]:
        """Move to completed once; only the caller that flips it unlocks the next course."""
        now = self._clock()
        updates = {"status": COURSE_COMPLETED, "progressPercentage": 100, "updatedAt": now}
        if not progress.get("startedAt"):
            updates["startedAt"] = now
        if not progress.get("completedAt"):
            updates["completedAt"] = now

        result = await self._progress_collection.update_one(
            {"_id": progress["_id"], "status": {"$ne": COURSE_COMPLETED}},
            {"$set": updates},
        )
        if result.modified_count == 1:
            logger.info(f"Child {child_id} completed course {course_id}")
            await self._stats.increment_counter(child_id, "totalCoursesCompleted")
            await self.unlock_next_course(child_id, course_id)

        return await self._progress_collection.find_one({"_id": progress["_id"]})

    async def sync_content_completion(self, child_id: str, ref: ContentRef) -> List[str]:
        """
        Record a completed unit in every course that contains it.

        Courses that are locked or over the in-progress cap are skipped;
        the unit counts for them once they start.

        Returns:
            Ids of the courses updated
        """
        updated = []
        for course in await self._catalog.find_courses_containing(ref):
            course_id = str(course["_id"])
            try:
                await self.update_content_progress(child_id, course_id, ref)
                updated.append(course_id)
            except ValidationException as e:
                logger.info(f"Skipping course {course_id} for child {child_id}: {e.message}")
        return updated

    # ─────────────────────────────────────────────────────────────────
    # Course transitions
    # ─────────────────────────────────────────────────────────────────

    async def unlock_next_course(self, child_id: str, completed_course_id: str) -> Optional[str]:
        """
        Start the next accessible course after a completed one.

        Returns:
            The unlocked course id, or None when the cap is reached or no
            later course is accessible
        """
        if await self.count_in_progress(child_id) >= self._max_in_progress:
            return None

        courses = sort_courses(await self._catalog.list_published_courses())
        ids = [str(c["_id"]) for c in courses]
        if completed_course_id not in ids:
            return None

        for course in courses[ids.index(completed_course_id) + 1:]:
            course_id = str(course["_id"])
            access = await self.check_course_access(child_id, course)
            if not access["accessible"]:
                continue

            progress = await self._find(child_id, course_id)
            if progress is None:
                progress = await self._create(child_id, course_id, COURSE_IN_PROGRESS)
            elif progress["status"] == COURSE_LOCKED:
                progress = await self._start(progress)
            elif progress["status"] == COURSE_COMPLETED:
                continue

            logger.info(f"Unlocked course {course_id} for child {child_id}")
            # Units completed while the course was closed count now
            await self._recompute(child_id, course, progress["_id"])
            return course_id

        return None

    async def mark_course_completed(self, child_id: str, course_id: str) -> Dict[str, Any]:
        """
        Complete a course directly (admin or parent action).

        Raises:
            ValidationException: If prerequisites are not completed
        """
        course = await self._catalog.get_course(course_id)
        progress = await self._find(child_id, course_id)

        if progress is None:
            access = await self.check_course_access(child_id, course)
            if not access["accessible"]:
                raise ValidationException(
                    message="Course is locked. Complete prerequisites first.",
                    code="COURSE_LOCKED",
                )
            progress = await self._create(child_id, course_id, COURSE_IN_PROGRESS)

        progress = await self._complete(child_id, course_id, progress)
        return self.format_progress(progress)

    async def get_course_progress(self, child_id: str, course_id: str) -> Dict[str, Any]:
        """Progress on one course with access information."""
        course = await self._catalog.get_course(course_id)
        progress = await self._find(child_id, course_id)
        access = await self.check_course_access(child_id, course)

        return {
            "course": {"id": course_id, "title": course.get("title"), "stepOrder": course.get("stepOrder")},
            "progress": self.format_progress(progress) if progress else None,
            "accessible": access["accessible"],
            "missingPrerequisites": access["missingPrerequisites"],
        }

    # ─────────────────────────────────────────────────────────────────
    # Formatting
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def format_progress(progress: Dict[str, Any]) -> Dict[str, Any]:
        """Format course progress for response."""
        return {
            "id": str(progress["_id"]),
            "childId": str(progress["childId"]),
            "courseId": str(progress["courseId"]),
            "status": progress["status"],
            "currentStep": progress.get("currentStep", 1),
            "completedSteps": progress.get("completedSteps", []),
            "progressPercentage": progress.get("progressPercentage", 0),
            "startedAt": progress.get("startedAt"),
            "completedAt": progress.get("completedAt"),
            "lastAccessedAt": progress.get("lastAccessedAt"),
        }

    @staticmethod
    def format_child_course(
        course: Dict[str, Any],
        progress: Optional[Dict[str, Any]],
        status: str,
        entry: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Format one course in a child's course list."""
        reason = None
        if not entry["accessible"]:
            reason = "Prerequisites not completed"
        elif status == COURSE_LOCKED:
            reason = "Complete the current course before starting another"

        return {
            "courseId": str(course["_id"]),
            "title": course.get("title"),
            "stepOrder": course.get("stepOrder"),
            "status": status,
            "isAccessible": status != COURSE_LOCKED,
            "reason": reason,
            "missingPrerequisites": entry["missingPrerequisites"],
            "progressPercentage": progress.get("progressPercentage", 0) if progress else 0,
            "currentStep": progress.get("currentStep", 1) if progress else 1,
        }
