"""
FastAPI router for content progress endpoints.

Starting content, recording interactions and reading progress.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from common.utils import success_response
from progress_engine.dependencies import (
    get_catalog_service,
    get_progress_service,
    get_reward_dispatcher,
)
from progress_engine.pipelines.progress import (
    start_content_pipeline,
    record_interaction_pipeline,
    get_progress_pipeline,
)
from progress_engine.schemas.progress import (
    InteractionPayload,
    ProgressRecordResponse,
    RewardResultResponse,
)
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.progress.progress_service import ProgressRecordService
from progress_engine.services.rewards.reward_dispatcher import RewardDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children/{child_id}/content/{kind}/{content_id}", tags=["progress"])


@router.post("/start")
async def start_content(
    child_id: str,
    kind: str,
    content_id: str,
    dispatcher: Annotated[RewardDispatcher, Depends(get_reward_dispatcher)],
):
    """Mark content as started. Repeating the call is harmless."""
    result = await start_content_pipeline(dispatcher, child_id, kind, content_id)
    return success_response(RewardResultResponse(**result).model_dump())


@router.post("/interactions")
async def record_interaction(
    child_id: str,
    kind: str,
    content_id: str,
    payload: InteractionPayload,
    dispatcher: Annotated[RewardDispatcher, Depends(get_reward_dispatcher)],
):
    """
    Record one interaction (view, score, recording, reading or watch).

    Returns the updated progress and any stars or badges it earned.
    """
    result = await record_interaction_pipeline(dispatcher, child_id, kind, content_id, payload)

    message = None
    if result["starsJustAwarded"]:
        message = f"Earned {result['starsEarnedNow']} stars"
    elif result["duplicate"]:
        message = "Already recorded"
    return success_response(RewardResultResponse(**result).model_dump(), message=message)


@router.get("/progress")
async def get_progress(
    child_id: str,
    kind: str,
    content_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    progress_service: Annotated[ProgressRecordService, Depends(get_progress_service)],
):
    """Get a child's progress on one content unit."""
    progress = await get_progress_pipeline(catalog, progress_service, child_id, kind, content_id)
    return success_response(ProgressRecordResponse(**progress).model_dump())
