"""
FastAPI dependencies for the progress engine.

Provides dependency injection for all services.
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from common.concurrency import KeyedLock
from progress_engine.config import Settings, settings as default_settings
from progress_engine.content import ContentDefaults
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.courses.course_progress_service import CourseProgressService
from progress_engine.services.progress.progress_service import ProgressRecordService
from progress_engine.services.rewards.badge_service import BadgeService
from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.reward_dispatcher import RewardDispatcher
from progress_engine.services.rewards.stats_service import ChildStatsService


# ─────────────────────────────────────────────────────────────────
# Service instances
# ─────────────────────────────────────────────────────────────────

_catalog_service: Optional[ContentCatalogService] = None
_progress_service: Optional[ProgressRecordService] = None

_ledger_service: Optional[StarLedgerService] = None
_stats_service: Optional[ChildStatsService] = None
_badge_service: Optional[BadgeService] = None
_reward_dispatcher: Optional[RewardDispatcher] = None

_course_service: Optional[CourseProgressService] = None


# ─────────────────────────────────────────────────────────────────
# Initialization functions
# ─────────────────────────────────────────────────────────────────

def init_content_services(db: AsyncIOMotorDatabase, config: Settings) -> None:
    """Initialize catalog and progress record services."""
    global _catalog_service, _progress_service

    _catalog_service = ContentCatalogService(
        db=db,
        defaults=ContentDefaults(
            video_stars=config.DEFAULT_VIDEO_STARS,
            video_required_watch_count=config.DEFAULT_VIDEO_REQUIRED_WATCH_COUNT,
            book_required_reading_count=config.DEFAULT_BOOK_REQUIRED_READING_COUNT,
        ),
    )
    _progress_service = ProgressRecordService(
        db=db,
        max_request_ids=config.MAX_REQUEST_IDS,
        duplicate_window_seconds=config.DUPLICATE_WINDOW_SECONDS,
    )


def init_reward_services(db: AsyncIOMotorDatabase, config: Settings) -> None:
    """Initialize ledger, stats and badge services."""
    global _ledger_service, _stats_service, _badge_service

    _ledger_service = StarLedgerService(db=db)
    _stats_service = ChildStatsService(
        db=db,
        ledger_service=_ledger_service,
        streak_timezone=config.STREAK_TIMEZONE,
    )
    _badge_service = BadgeService(db=db, stats_service=_stats_service)


def init_course_services(db: AsyncIOMotorDatabase, config: Settings) -> None:
    """Initialize course progress service."""
    global _course_service

    _course_service = CourseProgressService(
        db=db,
        catalog=_catalog_service,
        stats_service=_stats_service,
        max_in_progress=config.MAX_IN_PROGRESS_COURSES,
    )


def init_all_services(db: AsyncIOMotorDatabase, config: Optional[Settings] = None) -> None:
    """
    Initialize all services at application startup.

    Args:
        db: Main MongoDB database connection
        config: Settings, defaults to the module settings
    """
    global _reward_dispatcher
    config = config or default_settings

    init_content_services(db, config)
    init_reward_services(db, config)
    init_course_services(db, config)

    _reward_dispatcher = RewardDispatcher(
        catalog=_catalog_service,
        progress_service=_progress_service,
        ledger_service=_ledger_service,
        stats_service=_stats_service,
        badge_service=_badge_service,
        course_service=_course_service,
        lock=KeyedLock(),
    )


# ─────────────────────────────────────────────────────────────────
# Getters
# ─────────────────────────────────────────────────────────────────

def get_catalog_service() -> ContentCatalogService:
    """Get content catalog service instance."""
    if _catalog_service is None:
        raise RuntimeError("Content services not initialized.")
    return _catalog_service


def get_progress_service() -> ProgressRecordService:
    """Get progress record service instance."""
    if _progress_service is None:
        raise RuntimeError("Content services not initialized.")
    return _progress_service


def get_ledger_service() -> StarLedgerService:
    """Get star ledger service instance."""
    if _ledger_service is None:
        raise RuntimeError("Reward services not initialized.")
    return _ledger_service


def get_stats_service() -> ChildStatsService:
    """Get child stats service instance."""
    if _stats_service is None:
        raise RuntimeError("Reward services not initialized.")
    return _stats_service


def get_badge_service() -> BadgeService:
    """Get badge service instance."""
    if _badge_service is None:
        raise RuntimeError("Reward services not initialized.")
    return _badge_service


def get_reward_dispatcher() -> RewardDispatcher:
    """Get reward dispatcher instance."""
    if _reward_dispatcher is None:
        raise RuntimeError("Reward services not initialized.")
    return _reward_dispatcher


def get_course_service() -> CourseProgressService:
    """Get course progress service instance."""
    if _course_service is None:
        raise RuntimeError("Course services not initialized.")
    return _course_service
