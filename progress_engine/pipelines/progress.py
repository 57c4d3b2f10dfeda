"""
Progress pipeline functions.

Stateless orchestration logic for progress, reward and course operations.
"""

import logging
from typing import Dict, Any, Optional

from progress_engine.content import ContentRef
from progress_engine.schemas.progress import InteractionPayload
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.courses.course_progress_service import CourseProgressService
from progress_engine.services.progress.completion_rules import STATUS_NOT_STARTED
from progress_engine.services.progress.progress_service import ProgressRecordService
from progress_engine.services.rewards.badge_service import BadgeService
from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.reward_dispatcher import RewardDispatcher
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)


async def start_content_pipeline(
    dispatcher: RewardDispatcher,
    child_id: str,
    kind: str,
    content_id: str,
) -> Dict[str, Any]:
    """
    Start a content unit for a child.

    Args:
        dispatcher: For progress transitions
        child_id: Child ID
        kind: Content kind string
        content_id: Content ID

    Returns:
        RewardResult as dict
    """
    result = await dispatcher.start_content(child_id, kind, content_id)
    return result.to_dict()


async def record_interaction_pipeline(
    dispatcher: RewardDispatcher,
    child_id: str,
    kind: str,
    content_id: str,
    payload: InteractionPayload,
) -> Dict[str, Any]:
    """
    Record one interaction and pay the rewards it unlocks.

    Returns:
        RewardResult as dict
    """
    result = await dispatcher.record_interaction(child_id, kind, content_id, payload)

    if result.reward_pending:
        logger.warning(
            f"Rewards pending for child {child_id} on {kind} {content_id}; "
            "they settle on the next interaction"
        )
    return result.to_dict()


async def get_progress_pipeline(
    catalog: ContentCatalogService,
    progress_service: ProgressRecordService,
    child_id: str,
    kind: str,
    content_id: str,
) -> Dict[str, Any]:
    """
    Get a child's progress on one unit without creating a record.

    Returns:
        Formatted record, or a not_started placeholder
    """
    ref = ContentRef.parse(kind, content_id)
    await catalog.get_child(child_id)
    await catalog.get_unit(ref)

    record = await progress_service.get(child_id, ref)
    if record:
        return progress_service.format_record(record)

    return {
        "id": None,
        "childId": child_id,
        "contentType": ref.kind.value,
        "contentId": ref.content_id,
        "status": STATUS_NOT_STARTED,
    }


async def get_child_stats_pipeline(
    catalog: ContentCatalogService,
    stats_service: ChildStatsService,
    child_id: str,
) -> Dict[str, Any]:
    """Get the stats aggregate with level info for a child."""
    await catalog.get_child(child_id)
    return await stats_service.get_child_stats(child_id)


async def get_star_history_pipeline(
    catalog: ContentCatalogService,
    ledger_service: StarLedgerService,
    child_id: str,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    """
    Get a page of ledger entries, newest first.

    Returns:
        dict with items and total
    """
    await catalog.get_child(child_id)
    items, total = await ledger_service.get_history(child_id, page=page, limit=limit)
    return {"items": items, "total": total}


async def reset_progress_pipeline(
    dispatcher: RewardDispatcher,
    child_id: str,
    kind: str,
    content_id: str,
    reason: str,
) -> Dict[str, Any]:
    """Reset a unit for a child, reversing its awards."""
    return await dispatcher.reset_progress(child_id, kind, content_id, reason)


async def review_audio_assignment_pipeline(
    dispatcher: RewardDispatcher,
    child_id: str,
    content_id: str,
    decision: str,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a reviewer decision to a submitted recording."""
    result = await dispatcher.review_audio_assignment(child_id, content_id, decision, note)
    return result.to_dict()


async def get_child_courses_pipeline(
    catalog: ContentCatalogService,
    course_service: CourseProgressService,
    child_id: str,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Get published courses for a child with lock state applied.

    Returns:
        dict with courses and the number in progress
    """
    await catalog.get_child(child_id)
    courses = await course_service.get_child_courses(child_id, status=status)
    return {
        "courses": courses,
        "inProgressCount": sum(1 for c in courses if c["status"] == "in_progress"),
    }


async def get_course_progress_pipeline(
    catalog: ContentCatalogService,
    course_service: CourseProgressService,
    child_id: str,
    course_id: str,
) -> Dict[str, Any]:
    """Get progress and access info on one course."""
    await catalog.get_child(child_id)
    return await course_service.get_course_progress(child_id, course_id)


async def complete_course_pipeline(
    catalog: ContentCatalogService,
    course_service: CourseProgressService,
    badge_service: BadgeService,
    child_id: str,
    course_id: str,
) -> Dict[str, Any]:
    """
    Complete a course directly and award any course-count badges.

    Returns:
        dict with progress and newBadges
    """
    await catalog.get_child(child_id)
    progress = await course_service.mark_course_completed(child_id, course_id)
    new_badges = await badge_service.check_threshold_badges(child_id)
    return {"progress": progress, "newBadges": new_badges}


async def reconcile_stats_pipeline(
    catalog: ContentCatalogService,
    stats_service: ChildStatsService,
    child_id: str,
    repair: bool = False,
) -> Dict[str, Any]:
    """Compare the aggregate with the ledger, optionally repairing it."""
    await catalog.get_child(child_id)
    return await stats_service.reconcile(child_id, repair=repair)
