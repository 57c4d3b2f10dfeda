"""
Content kind registry.

Dispatch table from ContentKind to where the content lives, how its ledger
entries are tagged, which stats counter it feeds, and how a stored document
becomes a typed ContentUnit.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from progress_engine.content.units import (
    ActivityUnit,
    AudioAssignmentUnit,
    BookUnit,
    ChantUnit,
    ContentKind,
    ContentUnit,
    ExploreVideoUnit,
    LessonUnit,
    VideoUnit,
)


@dataclass(frozen=True)
class ContentDefaults:
    """Fallbacks for content documents missing reward fields."""
    video_stars: int = 10
    video_required_watch_count: int = 5
    book_required_reading_count: int = 5


UnitBuilder = Callable[[Dict[str, Any], ContentDefaults], ContentUnit]


@dataclass(frozen=True)
class ContentKindSpec:
    """How one content kind is stored, tagged and counted."""
    kind: ContentKind
    collection: str
    source_type: str
    source_model: str
    counter_field: str
    build: UnitBuilder
    query_filter: Dict[str, Any] = field(default_factory=dict)
    # Counter-based kinds get time-window duplicate suppression
    counts_repeats: bool = False


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _badge(doc: Dict[str, Any]) -> Optional[str]:
    badge = doc.get("badgeAwarded")
    return str(badge) if badge else None


def _base(kind: ContentKind, doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "kind": kind,
        "content_id": str(doc["_id"]),
        "title": doc.get("title") or "",
        "badge_id": _badge(doc),
    }


def _build_lesson(doc, defaults):
    return LessonUnit(**_base(ContentKind.LESSON, doc), stars_awarded=_int(doc.get("starsAwarded")))


def _build_lesson_item(doc, defaults):
    return LessonUnit(**_base(ContentKind.LESSON_ITEM, doc), stars_awarded=_int(doc.get("starsAwarded")))


def _build_activity(doc, defaults):
    passing = doc.get("passingScore")
    return ActivityUnit(
        **_base(ContentKind.ACTIVITY, doc),
        stars_awarded=_int(doc.get("starsAwarded")),
        passing_score=float(passing) if passing is not None else 0.0,
    )


def _build_chant(doc, defaults):
    return ChantUnit(**_base(ContentKind.CHANT, doc), stars_awarded=_int(doc.get("starsAwarded")))


def _build_audio_assignment(doc, defaults):
    return AudioAssignmentUnit(
        **_base(ContentKind.AUDIO_ASSIGNMENT, doc),
        stars_awarded=_int(doc.get("starsAwarded")),
    )


def _build_book(doc, defaults):
    return BookUnit(
        **_base(ContentKind.BOOK, doc),
        stars_per_reading=_int(doc.get("starsPerReading")),
        total_stars_awarded=_int(doc.get("totalStarsAwarded")),
        required_reading_count=_int(doc.get("requiredReadingCount")) or defaults.book_required_reading_count,
    )


def _build_video(doc, defaults):
    return VideoUnit(
        **_base(ContentKind.VIDEO, doc),
        stars_awarded=_int(doc.get("starsAwarded")) or defaults.video_stars,
        required_watch_count=_int(doc.get("requiredWatchCount")) or defaults.video_required_watch_count,
    )


def _build_explore_video(doc, defaults):
    return ExploreVideoUnit(
        **_base(ContentKind.EXPLORE_VIDEO, doc),
        stars_awarded=_int(doc.get("starsAwarded")) or defaults.video_stars,
        video_type=doc.get("videoType"),
    )


CONTENT_KINDS: Dict[ContentKind, ContentKindSpec] = {
    spec.kind: spec
    for spec in (
        ContentKindSpec(
            kind=ContentKind.LESSON,
            collection="lessons",
            source_type="lesson",
            source_model="Lesson",
            counter_field="totalLessonsCompleted",
            build=_build_lesson,
        ),
        ContentKindSpec(
            kind=ContentKind.LESSON_ITEM,
            collection="lessonitems",
            source_type="lesson_item",
            source_model="LessonItem",
            counter_field="totalLessonItemsCompleted",
            build=_build_lesson_item,
        ),
        ContentKindSpec(
            kind=ContentKind.ACTIVITY,
            collection="activities",
            source_type="activity",
            source_model="Activity",
            counter_field="totalActivitiesCompleted",
            build=_build_activity,
        ),
        ContentKindSpec(
            kind=ContentKind.CHANT,
            collection="chants",
            source_type="chant",
            source_model="Chant",
            counter_field="totalChantsCompleted",
            build=_build_chant,
        ),
        ContentKindSpec(
            kind=ContentKind.AUDIO_ASSIGNMENT,
            collection="audioassignments",
            source_type="audio_assignment",
            source_model="AudioAssignment",
            counter_field="totalAudioAssignmentsCompleted",
            build=_build_audio_assignment,
        ),
        ContentKindSpec(
            kind=ContentKind.BOOK,
            collection="books",
            source_type="book",
            source_model="Book",
            counter_field="totalBooksRead",
            build=_build_book,
            counts_repeats=True,
        ),
        ContentKindSpec(
            kind=ContentKind.VIDEO,
            collection="media",
            source_type="video",
            source_model="Media",
            counter_field="totalVideosWatched",
            build=_build_video,
            query_filter={"type": "video"},
            counts_repeats=True,
        ),
        ContentKindSpec(
            kind=ContentKind.EXPLORE_VIDEO,
            collection="explorecontents",
            source_type="explore_video",
            source_model="ExploreContent",
            counter_field="totalExploreVideosWatched",
            build=_build_explore_video,
            query_filter={"type": "video"},
            counts_repeats=True,
        ),
    )
}


def get_kind_spec(kind: ContentKind) -> ContentKindSpec:
    """Look up the registry entry for a kind."""
    return CONTENT_KINDS[kind]
