"""
Pydantic models for progress recording request/response validation.

Range checks (percentages, scores, counts) are done by the completion rules
so that callers outside HTTP get the same ValidationException.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Request Schemas
# =============================================================================

class InteractionPayload(BaseModel):
    """One interaction with a content unit."""
    requestId: Optional[str] = Field(None, max_length=100, description="Client id for retry deduplication")
    completionPercentage: Optional[float] = Field(None, description="0-100, lessons and videos")
    completed: Optional[bool] = Field(None, description="Explicit completion for lessons, activities, chants")
    score: Optional[float] = None
    maxScore: Optional[float] = None
    timeSpent: Optional[int] = Field(None, description="Total seconds spent; never lowers the stored value")
    timeSpentDelta: Optional[int] = Field(None, description="Seconds to add to the stored value")
    recordedAudioRef: Optional[str] = Field(None, description="Storage reference of a recording")
    readingSessionComplete: Optional[bool] = Field(None, description="A book reading session finished")
    countDelta: Optional[int] = Field(None, description="Watch or reading count change, defaults to 1")
    metadata: Optional[Dict[str, Any]] = None


class ResetRequest(BaseModel):
    """Admin reset of a progress record."""
    reason: str = Field(default="Progress reset by admin", max_length=200)


class ReviewRequest(BaseModel):
    """Reviewer decision on a submitted audio assignment."""
    decision: str = Field(..., description="approved | rejected")
    note: Optional[str] = Field(None, max_length=500)


# =============================================================================
# Response Schemas (used inside success_response data)
# =============================================================================

class ProgressRecordResponse(BaseModel):
    """Formatted progress record."""
    id: Optional[str] = None
    childId: str
    contentType: str
    contentId: str
    status: str
    progressPercentage: int = 0
    score: Optional[float] = None
    maxScore: Optional[float] = None
    timeSpent: int = 0
    attempts: int = 0
    watchCount: int = 0
    readingCount: int = 0
    recordedAudioRef: Optional[str] = None
    starsEarned: int = 0
    starsAwarded: bool = False
    rewardCycle: int = 0
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    lastInteractionAt: Optional[datetime] = None


class BadgeSummary(BaseModel):
    """Newly awarded badge."""
    id: Optional[str] = None
    name: Optional[str] = None
    icon: Optional[str] = None
    category: Optional[str] = None


class RewardResultResponse(BaseModel):
    """Outcome of a progress interaction."""
    progress: ProgressRecordResponse
    starsJustAwarded: bool = False
    starsEarnedNow: int = 0
    starsToAward: int = 0
    totalStars: Optional[int] = None
    newBadge: Optional[BadgeSummary] = None
    newBadges: List[BadgeSummary] = Field(default_factory=list)
    duplicate: bool = False
    isReplay: bool = False
    rewardPending: bool = False
