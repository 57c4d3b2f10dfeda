"""Unit tests for content kinds, refs and the kind registry."""

import pytest
from bson import ObjectId

from common.utils.exceptions import ValidationException
from progress_engine.content import (
    BookUnit,
    ContentDefaults,
    ContentKind,
    ContentRef,
    ExploreVideoUnit,
    VideoUnit,
    get_kind_spec,
)


class TestContentRef:
    def test_parses_known_kind(self):
        content_id = str(ObjectId())
        ref = ContentRef.parse("book", content_id)
        assert ref.kind == ContentKind.BOOK
        assert ref.key == ("book", content_id)

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            ContentRef.parse("podcast", str(ObjectId()))
        assert exc_info.value.code == "UNKNOWN_CONTENT_TYPE"
        assert exc_info.value.status_code == 400

    def test_malformed_id_is_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            ContentRef.parse("lesson", "not-an-id")
        assert exc_info.value.code == "INVALID_CONTENT_ID"


class TestUnitBuilders:
    def test_video_falls_back_to_defaults(self):
        doc = {"_id": ObjectId(), "title": "Colors", "type": "video"}
        unit = get_kind_spec(ContentKind.VIDEO).build(doc, ContentDefaults())

        assert isinstance(unit, VideoUnit)
        assert unit.stars_awarded == 10
        assert unit.required_watch_count == 5

    def test_configured_defaults_apply(self):
        doc = {"_id": ObjectId(), "title": "Shapes"}
        defaults = ContentDefaults(video_stars=3, video_required_watch_count=2)
        unit = get_kind_spec(ContentKind.VIDEO).build(doc, defaults)

        assert unit.stars_awarded == 3
        assert unit.required_watch_count == 2

    def test_badge_id_is_stringified(self):
        badge_id = ObjectId()
        doc = {"_id": ObjectId(), "title": "Hello", "starsAwarded": 20, "badgeAwarded": badge_id}
        unit = get_kind_spec(ContentKind.LESSON).build(doc, ContentDefaults())

        assert unit.stars_awarded == 20
        assert unit.badge_id == str(badge_id)

    def test_explore_replay_flag(self):
        doc = {"_id": ObjectId(), "title": "Again", "videoType": "replay"}
        unit = get_kind_spec(ContentKind.EXPLORE_VIDEO).build(doc, ContentDefaults())

        assert isinstance(unit, ExploreVideoUnit)
        assert unit.is_replay is True

    def test_garbage_star_values_become_zero(self):
        doc = {"_id": ObjectId(), "title": "Odd", "starsAwarded": "lots"}
        unit = get_kind_spec(ContentKind.CHANT).build(doc, ContentDefaults())
        assert unit.stars_awarded == 0


class TestBookStars:
    def _book(self, **kwargs):
        return BookUnit(
            kind=ContentKind.BOOK,
            content_id=str(ObjectId()),
            title="The Cat",
            badge_id=None,
            **kwargs,
        )

    def test_bonus_is_total_minus_incremental(self):
        book = self._book(stars_per_reading=2, total_stars_awarded=15, required_reading_count=5)
        assert book.incremental_stars == 10
        assert book.bonus_stars == 5

    def test_bonus_never_negative(self):
        book = self._book(stars_per_reading=5, total_stars_awarded=10, required_reading_count=5)
        assert book.bonus_stars == 0

    def test_required_readings_default_from_settings(self):
        doc = {"_id": ObjectId(), "title": "Dogs", "starsPerReading": 1}
        unit = get_kind_spec(ContentKind.BOOK).build(doc, ContentDefaults(book_required_reading_count=3))
        assert unit.required_reading_count == 3


class TestRegistry:
    def test_every_kind_is_registered(self):
        for kind in ContentKind:
            spec = get_kind_spec(kind)
            assert spec.kind == kind
            assert spec.counter_field.startswith("total")

    def test_counter_kinds_suppress_repeats(self):
        assert get_kind_spec(ContentKind.BOOK).counts_repeats
        assert get_kind_spec(ContentKind.VIDEO).counts_repeats
        assert not get_kind_spec(ContentKind.LESSON).counts_repeats
