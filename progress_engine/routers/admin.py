"""
FastAPI router for admin endpoints.

Progress resets, recording review, manual course completion and stats
reconciliation.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends

from common.utils import success_response
from progress_engine.dependencies import (
    get_badge_service,
    get_catalog_service,
    get_course_service,
    get_reward_dispatcher,
    get_stats_service,
)
from progress_engine.pipelines.progress import (
    reset_progress_pipeline,
    review_audio_assignment_pipeline,
    complete_course_pipeline,
    reconcile_stats_pipeline,
)
from progress_engine.schemas.progress import ResetRequest, ReviewRequest, RewardResultResponse
from progress_engine.schemas.stats import ReconcileRequest, ReconcileResponse
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.courses.course_progress_service import CourseProgressService
from progress_engine.services.rewards.badge_service import BadgeService
from progress_engine.services.rewards.reward_dispatcher import RewardDispatcher
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/children/{child_id}", tags=["admin"])


@router.post("/content/{kind}/{content_id}/reset")
async def reset_progress(
    child_id: str,
    kind: str,
    content_id: str,
    dispatcher: Annotated[RewardDispatcher, Depends(get_reward_dispatcher)],
    body: Annotated[Optional[ResetRequest], Body()] = None,
):
    """
    Reset a child's progress on a unit.

    Awards are reversed in the ledger and removed from the child's total;
    completing the unit again earns them again.
    """
    reason = body.reason if body else ResetRequest().reason
    result = await reset_progress_pipeline(dispatcher, child_id, kind, content_id, reason)
    return success_response(result, message="Progress reset")


@router.post("/audio-assignments/{content_id}/review")
async def review_audio_assignment(
    child_id: str,
    content_id: str,
    body: ReviewRequest,
    dispatcher: Annotated[RewardDispatcher, Depends(get_reward_dispatcher)],
):
    """Approve or reject a submitted recording."""
    result = await review_audio_assignment_pipeline(
        dispatcher, child_id, content_id, body.decision, body.note
    )
    return success_response(RewardResultResponse(**result).model_dump())


@router.post("/courses/{course_id}/complete")
async def complete_course(
    child_id: str,
    course_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    course_service: Annotated[CourseProgressService, Depends(get_course_service)],
    badge_service: Annotated[BadgeService, Depends(get_badge_service)],
):
    """Mark a course completed and unlock the next one."""
    result = await complete_course_pipeline(catalog, course_service, badge_service, child_id, course_id)
    return success_response(result, message="Course completed")


@router.post("/stats/reconcile")
async def reconcile_stats(
    child_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    stats_service: Annotated[ChildStatsService, Depends(get_stats_service)],
    body: Annotated[Optional[ReconcileRequest], Body()] = None,
):
    """Compare the child's star total with the ledger."""
    repair = body.repair if body else False
    result = await reconcile_stats_pipeline(catalog, stats_service, child_id, repair=repair)
    return success_response(ReconcileResponse(**result).model_dump())
