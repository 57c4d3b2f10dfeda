"""
FastAPI router for course progress endpoints.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from common.utils import success_response
from progress_engine.dependencies import get_catalog_service, get_course_service
from progress_engine.pipelines.progress import (
    get_child_courses_pipeline,
    get_course_progress_pipeline,
)
from progress_engine.schemas.courses import ChildCourseItem, CourseProgressResponse
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.courses.course_progress_service import CourseProgressService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children/{child_id}/courses", tags=["courses"])


@router.get("")
async def get_child_courses(
    child_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    course_service: Annotated[CourseProgressService, Depends(get_course_service)],
    status: Optional[str] = Query(None, description="not_started | in_progress | completed | locked"),
):
    """
    Get published courses with the child's status.

    Only one course can be in progress at a time; the rest are locked
    until it is completed.
    """
    result = await get_child_courses_pipeline(catalog, course_service, child_id, status=status)
    result["courses"] = [ChildCourseItem(**c).model_dump() for c in result["courses"]]
    return success_response(result)


@router.get("/{course_id}/progress")
async def get_course_progress(
    child_id: str,
    course_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    course_service: Annotated[CourseProgressService, Depends(get_course_service)],
):
    """Get the child's progress and access info on one course."""
    result = await get_course_progress_pipeline(catalog, course_service, child_id, course_id)
    if result["progress"]:
        result["progress"] = CourseProgressResponse(**result["progress"]).model_dump()
    return success_response(result)
