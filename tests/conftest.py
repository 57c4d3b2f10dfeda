"""Shared test fixtures for progress engine tests."""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId

from common.concurrency import KeyedLock
from progress_engine.database import ensure_indexes
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.courses.course_progress_service import CourseProgressService
from progress_engine.services.progress.progress_service import ProgressRecordService
from progress_engine.services.rewards.badge_service import BadgeService
from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.reward_dispatcher import RewardDispatcher
from progress_engine.services.rewards.stats_service import ChildStatsService
from tests.fakes import FakeDatabase


class FakeClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def sample_child_id():
    return str(ObjectId())


@pytest.fixture
def mock_collection():
    collection = AsyncMock()
    # Motor's find() and aggregate() return cursors synchronously,
    # so they are MagicMocks; find_one, insert_one etc. stay AsyncMock.
    collection.find = MagicMock()
    collection.aggregate = MagicMock()
    return collection


@pytest.fixture
def mock_db(mock_collection):
    db = MagicMock()
    db.__getitem__ = MagicMock(return_value=mock_collection)
    return db


# ─────────────────────────────────────────────────────────────────
# In-memory engine
# ─────────────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def fake_db():
    db = FakeDatabase()
    await ensure_indexes(db)
    return db


@pytest_asyncio.fixture
async def child(fake_db):
    child_id = ObjectId()
    await fake_db["childprofiles"].insert_one({"_id": child_id, "displayName": "Mia", "age": 6, "isActive": True})
    return str(child_id)


@pytest.fixture
def engine(fake_db, clock):
    """All services wired together over the fake database."""
    catalog = ContentCatalogService(fake_db)
    progress = ProgressRecordService(fake_db, max_request_ids=20, duplicate_window_seconds=5, clock=clock)
    ledger = StarLedgerService(fake_db)
    stats = ChildStatsService(fake_db, ledger, streak_timezone="UTC", clock=clock)
    badges = BadgeService(fake_db, stats)
    courses = CourseProgressService(fake_db, catalog, stats, max_in_progress=1, clock=clock)
    dispatcher = RewardDispatcher(
        catalog=catalog,
        progress_service=progress,
        ledger_service=ledger,
        stats_service=stats,
        badge_service=badges,
        course_service=courses,
        lock=KeyedLock(),
    )
    return SimpleNamespace(
        db=fake_db,
        catalog=catalog,
        progress=progress,
        ledger=ledger,
        stats=stats,
        badges=badges,
        courses=courses,
        dispatcher=dispatcher,
        clock=clock,
    )
