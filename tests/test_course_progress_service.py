"""Tests for CourseProgressService and course sync from completions."""

import pytest
from datetime import datetime, timedelta, timezone
from bson import ObjectId

from common.utils.exceptions import ValidationException
from progress_engine.content import ContentRef
from tests.fakes import add_content


CREATED = datetime(2025, 9, 1, tzinfo=timezone.utc)


async def _add_course(db, title, step_order, contents, prerequisites=None):
    course_id = ObjectId()
    await db["courses"].insert_one({
        "_id": course_id,
        "title": title,
        "stepOrder": step_order,
        "isPublished": True,
        "isSequential": bool(prerequisites),
        "prerequisites": prerequisites or [],
        "contents": [
            {"contentId": ObjectId(cid), "contentKind": kind, "step": step, "required": required}
            for cid, kind, step, required in contents
        ],
        "createdAt": CREATED + timedelta(days=step_order),
    })
    return str(course_id)


async def _course_progress(engine, child, course_id):
    return await engine.db["courseprogress"].find_one({
        "childId": ObjectId(child),
        "courseId": ObjectId(course_id),
    })


@pytest.fixture
def lessons():
    """Factory for lesson ids inserted into the fake database."""
    async def make(engine, count, stars=5):
        return [await add_content(engine.db, "lessons", starsAwarded=stars) for _ in range(count)]
    return make


# ─────────────────────────────────────────────────────────────────
# Access
# ─────────────────────────────────────────────────────────────────


class TestAccess:
    @pytest.mark.asyncio
    async def test_missing_prerequisites_are_listed(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        second = await _add_course(engine.db, "Words", 2, [(l2, "lesson", 1, True)], prerequisites=[ObjectId(first)])

        course = await engine.catalog.get_course(second)
        access = await engine.courses.check_course_access(child, course)

        assert access["accessible"] is False
        assert access["reason"] == "Prerequisites not completed"
        assert access["missingPrerequisites"] == [{"id": first, "title": "Letters", "stepOrder": 1}]

    @pytest.mark.asyncio
    async def test_deleted_prerequisite_still_blocks(self, engine, child, lessons):
        (l1,) = await lessons(engine, 1)
        gone = ObjectId()
        course_id = await _add_course(engine.db, "Words", 2, [(l1, "lesson", 1, True)], prerequisites=[gone])

        course = await engine.catalog.get_course(course_id)
        access = await engine.courses.check_course_access(child, course)

        assert access["accessible"] is False
        assert access["missingPrerequisites"][0]["title"] is None

    @pytest.mark.asyncio
    async def test_mark_completed_requires_prerequisites(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        second = await _add_course(engine.db, "Words", 2, [(l2, "lesson", 1, True)], prerequisites=[ObjectId(first)])

        with pytest.raises(ValidationException) as exc_info:
            await engine.courses.mark_course_completed(child, second)
        assert exc_info.value.code == "COURSE_LOCKED"


# ─────────────────────────────────────────────────────────────────
# Course list and cap
# ─────────────────────────────────────────────────────────────────


class TestChildCourses:
    @pytest.mark.asyncio
    async def test_first_course_starts_and_next_is_locked(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        await _add_course(engine.db, "Words", 2, [(l2, "lesson", 1, True)], prerequisites=[ObjectId(first)])

        courses = await engine.courses.get_child_courses(child)

        assert [c["status"] for c in courses] == ["in_progress", "locked"]
        assert courses[1]["reason"] == "Prerequisites not completed"
        assert (await _course_progress(engine, child, first))["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_cap_locks_second_open_course(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        second = await _add_course(engine.db, "Colors", 2, [(l2, "lesson", 1, True)])

        courses = await engine.courses.get_child_courses(child)

        assert [c["status"] for c in courses] == ["in_progress", "locked"]
        assert courses[1]["reason"] == "Complete the current course before starting another"
        assert await engine.courses.count_in_progress(child) == 1

        unlocked = await engine.courses.mark_course_completed(child, first)
        assert unlocked["status"] == "completed"
        assert (await _course_progress(engine, child, second))["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_status_filter(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        await _add_course(engine.db, "Colors", 2, [(l2, "lesson", 1, True)])

        locked = await engine.courses.get_child_courses(child, status="locked")
        assert [c["title"] for c in locked] == ["Colors"]


# ─────────────────────────────────────────────────────────────────
# Content completion sync
# ─────────────────────────────────────────────────────────────────


class TestCompletionSync:
    @pytest.mark.asyncio
    async def test_completions_advance_and_finish_course(self, engine, child, lessons):
        l1, l2, l3 = await lessons(engine, 3)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True), (l2, "lesson", 2, True)])
        second = await _add_course(engine.db, "Words", 2, [(l3, "lesson", 1, True)], prerequisites=[ObjectId(first)])

        await engine.dispatcher.record_completion(child, "lesson", l1)
        progress = await _course_progress(engine, child, first)
        assert progress["status"] == "in_progress"
        assert progress["progressPercentage"] == 50
        assert progress["completedSteps"] == [1]
        assert progress["currentStep"] == 2

        await engine.dispatcher.record_completion(child, "lesson", l2)
        progress = await _course_progress(engine, child, first)
        assert progress["status"] == "completed"
        assert progress["progressPercentage"] == 100
        assert progress["completedAt"] == engine.clock()

        stats = await engine.stats.get_or_create(child)
        assert stats["totalCoursesCompleted"] == 1
        assert (await _course_progress(engine, child, second))["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_later_step_completed_first_counts_in_order(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        course_id = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True), (l2, "lesson", 2, True)])

        result = await engine.dispatcher.record_completion(child, "lesson", l2)

        assert result.stars_earned_now == 5
        progress = await _course_progress(engine, child, course_id)
        assert progress["status"] == "in_progress"
        assert progress["progressPercentage"] == 50
        assert progress["currentStep"] == 1
        assert progress["completedSteps"] == []

        engine.clock.advance(minutes=10)
        await engine.dispatcher.record_completion(child, "lesson", l1)

        progress = await _course_progress(engine, child, course_id)
        assert progress["status"] == "completed"
        assert progress["progressPercentage"] == 100
        assert progress["completedSteps"] == [1, 2]
        assert progress["completedAt"] == engine.clock()
        assert (await engine.stats.get_or_create(child))["totalCoursesCompleted"] == 1

    @pytest.mark.asyncio
    async def test_course_state_follows_progress_records(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        course_id = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True), (l2, "lesson", 2, True)])
        await engine.dispatcher.record_completion(child, "lesson", l2)
        await engine.dispatcher.start_content(child, "lesson", l1)

        progress = await engine.courses.update_content_progress(child, course_id, ContentRef.parse("lesson", l2))

        assert progress["status"] == "in_progress"
        assert progress["progressPercentage"] == 50
        assert progress["currentStep"] == 1
        stored = await _course_progress(engine, child, course_id)
        assert [str(entry["contentId"]) for entry in stored["contentProgress"]] == [l2]

    @pytest.mark.asyncio
    async def test_content_outside_course(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        course_id = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])

        with pytest.raises(ValidationException) as exc_info:
            await engine.courses.update_content_progress(child, course_id, ContentRef.parse("lesson", l2))
        assert exc_info.value.code == "CONTENT_NOT_IN_COURSE"

    @pytest.mark.asyncio
    async def test_cap_defers_second_course_until_unlocked(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        second = await _add_course(engine.db, "Colors", 2, [(l2, "lesson", 1, True)])
        await engine.courses.get_child_courses(child)

        with pytest.raises(ValidationException) as exc_info:
            await engine.courses.update_content_progress(child, second, ContentRef.parse("lesson", l2))
        assert exc_info.value.code == "COURSE_LIMIT_REACHED"

        result = await engine.dispatcher.record_completion(child, "lesson", l2)
        assert result.stars_earned_now == 5
        assert (await _course_progress(engine, child, second))["status"] == "locked"

        await engine.dispatcher.record_completion(child, "lesson", l1)

        assert (await _course_progress(engine, child, first))["status"] == "completed"
        assert (await _course_progress(engine, child, second))["status"] == "completed"
        assert (await engine.stats.get_or_create(child))["totalCoursesCompleted"] == 2

    @pytest.mark.asyncio
    async def test_listing_counts_units_completed_before_start(self, engine, child, lessons):
        l1, l2 = await lessons(engine, 2)
        first = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])
        second = await _add_course(engine.db, "Colors", 2, [(l2, "lesson", 1, True)])
        await engine.db["progressrecords"].insert_one({
            "childId": ObjectId(child),
            "contentKind": "lesson",
            "contentId": ObjectId(l1),
            "status": "completed",
            "completedAt": engine.clock(),
        })

        courses = await engine.courses.get_child_courses(child)

        assert [c["status"] for c in courses] == ["completed", "in_progress"]
        assert (await _course_progress(engine, child, first))["progressPercentage"] == 100
        assert (await _course_progress(engine, child, second))["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_optional_items_do_not_hold_back_steps(self, engine, child, lessons):
        l1, l2, l3 = await lessons(engine, 3)
        course_id = await _add_course(
            engine.db,
            "Letters",
            1,
            [(l1, "lesson", 1, True), (l2, "lesson", 1, False), (l3, "lesson", 2, True)],
        )

        await engine.dispatcher.record_completion(child, "lesson", l1)
        await engine.dispatcher.record_completion(child, "lesson", l3)

        progress = await _course_progress(engine, child, course_id)
        assert progress["status"] == "completed"

    @pytest.mark.asyncio
    async def test_completion_counted_once(self, engine, child, lessons):
        (l1,) = await lessons(engine, 1)
        course_id = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])

        await engine.dispatcher.record_completion(child, "lesson", l1)
        await engine.courses.mark_course_completed(child, course_id)
        await engine.courses.update_content_progress(child, course_id, ContentRef.parse("lesson", l1))

        stats = await engine.stats.get_or_create(child)
        assert stats["totalCoursesCompleted"] == 1


class TestCourseProgressView:
    @pytest.mark.asyncio
    async def test_unstarted_course(self, engine, child, lessons):
        (l1,) = await lessons(engine, 1)
        course_id = await _add_course(engine.db, "Letters", 1, [(l1, "lesson", 1, True)])

        view = await engine.courses.get_course_progress(child, course_id)

        assert view["progress"] is None
        assert view["accessible"] is True
        assert view["course"]["title"] == "Letters"
