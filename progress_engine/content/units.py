"""
Typed content units.

Every completable item is one variant of a closed set of kinds. Each
variant carries only the reward and completion fields its rule needs, so
the reward dispatcher never reaches into raw content documents.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId

from common.utils.exceptions import ValidationException


class ContentKind(str, Enum):
    """Kinds of completable content."""
    LESSON = "lesson"
    LESSON_ITEM = "lesson_item"
    ACTIVITY = "activity"
    CHANT = "chant"
    AUDIO_ASSIGNMENT = "audio_assignment"
    BOOK = "book"
    VIDEO = "video"
    EXPLORE_VIDEO = "explore_video"

    @classmethod
    def parse(cls, value: str) -> "ContentKind":
        """Resolve a kind string, raising ValidationException when unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ValidationException(
                message=f"Unknown content type: {value}",
                code="UNKNOWN_CONTENT_TYPE",
                details={"allowed": [k.value for k in cls]},
            )


@dataclass(frozen=True)
class ContentRef:
    """Reference to one content unit: its kind plus document id."""
    kind: ContentKind
    content_id: str

    @classmethod
    def parse(cls, kind: str, content_id: str) -> "ContentRef":
        content_kind = kind if isinstance(kind, ContentKind) else ContentKind.parse(kind)
        try:
            ObjectId(content_id)
        except (InvalidId, TypeError):
            raise ValidationException(
                message=f"Invalid content id: {content_id}",
                code="INVALID_CONTENT_ID",
            )
        return cls(kind=content_kind, content_id=str(content_id))

    @property
    def key(self) -> tuple:
        return (self.kind.value, self.content_id)


@dataclass(frozen=True)
class ContentUnit:
    """Fields shared by every kind."""
    kind: ContentKind
    content_id: str
    title: str
    badge_id: Optional[str]

    @property
    def ref(self) -> ContentRef:
        return ContentRef(kind=self.kind, content_id=self.content_id)


@dataclass(frozen=True)
class LessonUnit(ContentUnit):
    """Lesson or lesson item; completes on a full view or explicit completion."""
    stars_awarded: int = 0


@dataclass(frozen=True)
class ActivityUnit(ContentUnit):
    """Scored activity or quiz."""
    stars_awarded: int = 0
    passing_score: float = 0.0  # percent


@dataclass(frozen=True)
class ChantUnit(ContentUnit):
    """Chant; completes when a recording is attached."""
    stars_awarded: int = 0


@dataclass(frozen=True)
class AudioAssignmentUnit(ContentUnit):
    """Audio assignment; completes only when a reviewer approves the recording."""
    stars_awarded: int = 0


@dataclass(frozen=True)
class BookUnit(ContentUnit):
    """Book read over several sessions."""
    stars_per_reading: int = 0
    total_stars_awarded: int = 0
    required_reading_count: int = 5

    @property
    def incremental_stars(self) -> int:
        """Stars paid out across all required readings."""
        return self.stars_per_reading * self.required_reading_count

    @property
    def bonus_stars(self) -> int:
        """Stars paid once when the reading requirement is met."""
        return max(0, self.total_stars_awarded - self.incremental_stars)


@dataclass(frozen=True)
class VideoUnit(ContentUnit):
    """Journey video; completes after a required number of watches."""
    stars_awarded: int = 10
    required_watch_count: int = 5


@dataclass(frozen=True)
class ExploreVideoUnit(ContentUnit):
    """Explore video; completes on first watch. Replays never pay stars."""
    stars_awarded: int = 10
    video_type: Optional[str] = None

    @property
    def is_replay(self) -> bool:
        return self.video_type == "replay"
