"""HTTP tests for the progress engine routers."""

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

from api import app
from progress_engine import dependencies
from tests.fakes import add_content


@pytest_asyncio.fixture
async def client(engine):
    """Client over the app with every service getter pointed at the fake engine."""
    app.dependency_overrides.update({
        dependencies.get_catalog_service: lambda: engine.catalog,
        dependencies.get_progress_service: lambda: engine.progress,
        dependencies.get_ledger_service: lambda: engine.ledger,
        dependencies.get_stats_service: lambda: engine.stats,
        dependencies.get_badge_service: lambda: engine.badges,
        dependencies.get_reward_dispatcher: lambda: engine.dispatcher,
        dependencies.get_course_service: lambda: engine.courses,
    })
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


def _content_url(child, kind, content_id, action):
    return f"/api/v1/children/{child}/content/{kind}/{content_id}/{action}"


class TestProgressRoutes:
    @pytest.mark.asyncio
    async def test_interaction_awards_stars(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)

        response = await client.post(_content_url(child, "lesson", lesson_id, "interactions"), json={"completed": True})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Earned 20 stars"
        assert body["data"]["starsEarnedNow"] == 20
        assert body["data"]["totalStars"] == 20
        assert body["data"]["progress"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_duplicate_request_id(self, client, engine, child):
        video_id = await add_content(engine.db, "media", type="video")
        url = _content_url(child, "video", video_id, "interactions")

        await client.post(url, json={"requestId": "w-1"})
        response = await client.post(url, json={"requestId": "w-1"})

        assert response.json()["message"] == "Already recorded"
        assert response.json()["data"]["duplicate"] is True

    @pytest.mark.asyncio
    async def test_start_then_get_progress(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)

        start = await client.post(_content_url(child, "lesson", lesson_id, "start"))
        progress = await client.get(_content_url(child, "lesson", lesson_id, "progress"))

        assert start.json()["data"]["starsToAward"] == 20
        assert progress.json()["data"]["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_progress_before_any_interaction(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)

        response = await client.get(_content_url(child, "lesson", lesson_id, "progress"))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "not_started"
        assert response.json()["data"]["id"] is None

    @pytest.mark.asyncio
    async def test_validation_error_envelope(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)

        response = await client.post(
            _content_url(child, "lesson", lesson_id, "interactions"),
            json={"completionPercentage": 150},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_PAYLOAD"

    @pytest.mark.asyncio
    async def test_unknown_kind_and_child(self, client, engine, child):
        response = await client.post(_content_url(child, "podcast", str(ObjectId()), "interactions"), json={})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNKNOWN_CONTENT_TYPE"

        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)
        response = await client.post(_content_url(str(ObjectId()), "lesson", lesson_id, "interactions"), json={})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CHILD_NOT_FOUND"


class TestStatsRoutes:
    @pytest.mark.asyncio
    async def test_stats_and_history(self, client, engine, child):
        for stars in (5, 10):
            lesson_id = await add_content(engine.db, "lessons", starsAwarded=stars)
            await client.post(_content_url(child, "lesson", lesson_id, "interactions"), json={"completed": True})

        stats = (await client.get(f"/api/v1/children/{child}/stats")).json()["data"]
        history = (await client.get(f"/api/v1/children/{child}/stars/history", params={"limit": 1})).json()

        assert stats["totalStars"] == 15
        assert stats["level"] == "Getting Started"
        assert stats["nextLevel"] == {"level": "Star Beginner", "starsNeeded": 10}
        assert stats["totalLessonsCompleted"] == 2
        assert len(history["data"]) == 1
        assert history["pagination"]["total"] == 2
        assert history["pagination"]["hasNextPage"] is True


class TestCourseRoutes:
    @pytest.mark.asyncio
    async def test_course_list_and_progress(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=5)
        course_id = ObjectId()
        await engine.db["courses"].insert_one({
            "_id": course_id,
            "title": "Letters",
            "stepOrder": 1,
            "isPublished": True,
            "contents": [{"contentId": ObjectId(lesson_id), "contentKind": "lesson", "step": 1}],
        })

        listing = (await client.get(f"/api/v1/children/{child}/courses")).json()["data"]
        await client.post(_content_url(child, "lesson", lesson_id, "interactions"), json={"completed": True})
        progress = (await client.get(f"/api/v1/children/{child}/courses/{course_id}/progress")).json()["data"]

        assert listing["inProgressCount"] == 1
        assert listing["courses"][0]["status"] == "in_progress"
        assert progress["progress"]["status"] == "completed"
        assert progress["progress"]["progressPercentage"] == 100


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_reset_and_reconcile(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)
        await client.post(_content_url(child, "lesson", lesson_id, "interactions"), json={"completed": True})

        reset = await client.post(
            f"/api/v1/admin/children/{child}/content/lesson/{lesson_id}/reset",
            json={"reason": "Wrong child"},
        )
        reconcile = await client.post(f"/api/v1/admin/children/{child}/stats/reconcile")

        assert reset.json()["data"]["starsReversed"] == 20
        assert reconcile.json()["data"]["difference"] == 0
        assert reconcile.json()["data"]["totalStars"] == 0

    @pytest.mark.asyncio
    async def test_review_audio_assignment(self, client, engine, child):
        assignment_id = await add_content(engine.db, "audioassignments", starsAwarded=25)
        await client.post(
            _content_url(child, "audio_assignment", assignment_id, "interactions"),
            json={"recordedAudioRef": "audio/1.m4a"},
        )

        response = await client.post(
            f"/api/v1/admin/children/{child}/audio-assignments/{assignment_id}/review",
            json={"decision": "approved"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["starsEarnedNow"] == 25

    @pytest.mark.asyncio
    async def test_complete_course(self, client, engine, child):
        course_id = ObjectId()
        await engine.db["courses"].insert_one({"_id": course_id, "title": "Letters", "isPublished": True, "contents": []})

        response = await client.post(f"/api/v1/admin/children/{child}/courses/{course_id}/complete")

        assert response.status_code == 200
        assert response.json()["data"]["progress"]["status"] == "completed"
        assert (await engine.stats.get_or_create(child))["totalCoursesCompleted"] == 1


class TestAppEnvelopes:
    @pytest.mark.asyncio
    async def test_malformed_body_uses_invalid_payload(self, client, engine, child):
        lesson_id = await add_content(engine.db, "lessons", starsAwarded=20)

        response = await client.post(
            _content_url(child, "lesson", lesson_id, "interactions"),
            json={"timeSpent": "a while"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_PAYLOAD"
        assert body["error"]["details"]["errors"]

    @pytest.mark.asyncio
    async def test_health_reports_disconnected_database(self, client):
        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["data"] == {"status": "degraded", "version": "1.0.0", "database": False}
