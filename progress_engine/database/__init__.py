"""
Progress engine collection names and index setup.
"""

from progress_engine.database.collections import (
    CHILD_PROFILES,
    BADGES,
    COURSES,
    PROGRESS_RECORDS,
    STAR_EARNINGS,
    CHILD_STATS,
    COURSE_PROGRESS,
)
from progress_engine.database.indexes import ensure_indexes

__all__ = [
    "CHILD_PROFILES",
    "BADGES",
    "COURSES",
    "PROGRESS_RECORDS",
    "STAR_EARNINGS",
    "CHILD_STATS",
    "COURSE_PROGRESS",
    "ensure_indexes",
]
