"""Request and response models."""

from progress_engine.schemas.progress import (
    InteractionPayload,
    ResetRequest,
    ReviewRequest,
    ProgressRecordResponse,
    BadgeSummary,
    RewardResultResponse,
)
from progress_engine.schemas.stats import (
    ChildStatsResponse,
    StarEarningResponse,
    ReconcileRequest,
    ReconcileResponse,
)
from progress_engine.schemas.courses import (
    CourseProgressResponse,
    ChildCourseItem,
)

__all__ = [
    "InteractionPayload",
    "ResetRequest",
    "ReviewRequest",
    "ProgressRecordResponse",
    "BadgeSummary",
    "RewardResultResponse",
    "ChildStatsResponse",
    "StarEarningResponse",
    "ReconcileRequest",
    "ReconcileResponse",
    "CourseProgressResponse",
    "ChildCourseItem",
]
