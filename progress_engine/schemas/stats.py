"""
Pydantic models for child stats and star history.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NextLevel(BaseModel):
    level: Optional[str] = None
    starsNeeded: int = 0


class ChildStatsResponse(BaseModel):
    """Formatted ChildStats aggregate."""
    childId: str
    totalStars: int = 0
    currentStreak: int = 0
    longestStreak: int = 0
    lastActivityDate: Optional[str] = None
    badges: List[str] = Field(default_factory=list)
    totalBadges: int = 0
    level: str
    nextLevel: NextLevel
    totalLessonsCompleted: int = 0
    totalLessonItemsCompleted: int = 0
    totalActivitiesCompleted: int = 0
    totalVideosWatched: int = 0
    totalBooksRead: int = 0
    totalChantsCompleted: int = 0
    totalAudioAssignmentsCompleted: int = 0
    totalExploreVideosWatched: int = 0
    totalCoursesCompleted: int = 0


class LedgerSource(BaseModel):
    type: Optional[str] = None
    contentId: Optional[str] = None
    contentType: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StarEarningResponse(BaseModel):
    """One ledger entry."""
    id: str
    childId: str
    stars: int
    entryType: str
    source: LedgerSource
    description: Optional[str] = None
    createdAt: Optional[datetime] = None


class ReconcileResponse(BaseModel):
    """Ledger vs. aggregate comparison."""
    childId: str
    totalStars: int
    ledgerBalance: int
    difference: int
    repaired: bool


class ReconcileRequest(BaseModel):
    repair: bool = Field(default=False, description="Shift totalStars to the ledger balance")
