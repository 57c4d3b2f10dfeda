"""
Pydantic models for course progress.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CourseProgressResponse(BaseModel):
    """Formatted course progress document."""
    id: Optional[str] = None
    childId: str
    courseId: str
    status: str
    currentStep: int = 1
    completedSteps: List[int] = Field(default_factory=list)
    progressPercentage: int = 0
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    lastAccessedAt: Optional[datetime] = None


class ChildCourseItem(BaseModel):
    """A course as seen by one child."""
    courseId: str
    title: Optional[str] = None
    stepOrder: Optional[int] = None
    status: str
    isAccessible: bool
    reason: Optional[str] = None
    progressPercentage: int = 0
    currentStep: int = 1
    missingPrerequisites: List[Dict[str, Any]] = Field(default_factory=list)
