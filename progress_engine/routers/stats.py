"""
FastAPI router for child stats and star history.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from common.utils import success_response, paginated_response
from progress_engine.dependencies import (
    get_catalog_service,
    get_ledger_service,
    get_stats_service,
)
from progress_engine.pipelines.progress import (
    get_child_stats_pipeline,
    get_star_history_pipeline,
)
from progress_engine.schemas.stats import ChildStatsResponse, StarEarningResponse
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children/{child_id}", tags=["stats"])


@router.get("/stats")
async def get_child_stats(
    child_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    stats_service: Annotated[ChildStatsService, Depends(get_stats_service)],
):
    """Get stars, streaks, badges, counters and level for a child."""
    stats = await get_child_stats_pipeline(catalog, stats_service, child_id)
    return success_response(ChildStatsResponse(**stats).model_dump())


@router.get("/stars/history")
async def get_star_history(
    child_id: str,
    catalog: Annotated[ContentCatalogService, Depends(get_catalog_service)],
    ledger_service: Annotated[StarLedgerService, Depends(get_ledger_service)],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Get the child's star ledger, newest first."""
    history = await get_star_history_pipeline(catalog, ledger_service, child_id, page=page, limit=limit)
    items = [StarEarningResponse(**item).model_dump() for item in history["items"]]
    return paginated_response(items, history["total"], page, limit)
