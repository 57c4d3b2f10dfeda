"""Course progress and unlocking."""

from progress_engine.services.courses.course_progress_service import CourseProgressService

__all__ = ["CourseProgressService"]
