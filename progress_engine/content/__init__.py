"""
Content kinds, typed units and the kind registry.
"""

from progress_engine.content.units import (
    ContentKind,
    ContentRef,
    ContentUnit,
    LessonUnit,
    ActivityUnit,
    ChantUnit,
    AudioAssignmentUnit,
    BookUnit,
    VideoUnit,
    ExploreVideoUnit,
)
from progress_engine.content.registry import (
    CONTENT_KINDS,
    ContentDefaults,
    ContentKindSpec,
    get_kind_spec,
)

__all__ = [
    "ContentKind",
    "ContentRef",
    "ContentUnit",
    "LessonUnit",
    "ActivityUnit",
    "ChantUnit",
    "AudioAssignmentUnit",
    "BookUnit",
    "VideoUnit",
    "ExploreVideoUnit",
    "CONTENT_KINDS",
    "ContentDefaults",
    "ContentKindSpec",
    "get_kind_spec",
]
