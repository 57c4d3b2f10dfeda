"""
Content catalog lookups.

Resolves child profiles and content documents owned by the authoring side
of the platform into the identities the engine works with.
"""

import logging
from typing import Optional, Dict, Any, List

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from common.utils.exceptions import NotFoundException, ValidationException
from progress_engine.content import (
    ContentDefaults,
    ContentRef,
    ContentUnit,
    get_kind_spec,
)
from progress_engine.database.collections import CHILD_PROFILES, COURSES

logger = logging.getLogger(__name__)


def to_object_id(value: str, label: str = "id") -> ObjectId:
    """
    Convert a string id to ObjectId.

    Raises:
        ValidationException: If the value is not a valid ObjectId
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationException(
            message=f"Invalid {label}: {value}",
            code="INVALID_ID",
        )


class ContentCatalogService:
    """
    Read-only access to children, content units and courses.
    """

    def __init__(self, db: AsyncIOMotorDatabase, defaults: Optional[ContentDefaults] = None):
        """
        Initialize ContentCatalogService.

        Args:
            db: MongoDB database connection
            defaults: Fallback reward values for content missing them
        """
        self._db = db
        self._defaults = defaults or ContentDefaults()
        self._children_collection = db[CHILD_PROFILES]
        self._courses_collection = db[COURSES]

    async def get_child(self, child_id: str) -> Dict[str, Any]:
        """
        Get an active child profile.

        Raises:
            NotFoundException: If the child is missing or soft-deleted
        """
        child = await self._children_collection.find_one(
            {"_id": to_object_id(child_id, "child id")},
            {"_id": 1, "displayName": 1, "age": 1, "isActive": 1},
        )
        if not child or child.get("isActive") is False:
            raise NotFoundException(message="Child not found", code="CHILD_NOT_FOUND")
        return child

    async def get_unit(self, ref: ContentRef) -> ContentUnit:
        """
        Load a content document and build its typed unit.

        Raises:
            NotFoundException: If the content does not exist for that kind
        """
        spec = get_kind_spec(ref.kind)
        query = {"_id": to_object_id(ref.content_id, "content id"), **spec.query_filter}

        doc = await self._db[spec.collection].find_one(query)
        if not doc:
            raise NotFoundException(
                message=f"{spec.source_model} not found",
                code="CONTENT_NOT_FOUND",
                details={"contentType": ref.kind.value, "contentId": ref.content_id},
            )

        return spec.build(doc, self._defaults)

    async def get_course(self, course_id: str) -> Dict[str, Any]:
        """
        Get a course document.

        Raises:
            NotFoundException: If the course does not exist
        """
        course = await self._courses_collection.find_one({"_id": to_object_id(course_id, "course id")})
        if not course:
            raise NotFoundException(message="Course not found", code="COURSE_NOT_FOUND")
        return course

    async def list_published_courses(self) -> List[Dict[str, Any]]:
        """Get all published, non-archived courses."""
        cursor = self._courses_collection.find({"isPublished": True, "isArchived": {"$ne": True}})
        return await cursor.to_list(length=500)

    async def find_courses_containing(self, ref: ContentRef) -> List[Dict[str, Any]]:
        """Get published courses whose contents include the unit."""
        cursor = self._courses_collection.find({
            "isPublished": True,
            "isArchived": {"$ne": True},
            "contents": {
                "$elemMatch": {
                    "contentId": to_object_id(ref.content_id, "content id"),
                    "contentKind": ref.kind.value,
                }
            },
        })
        return await cursor.to_list(length=100)
