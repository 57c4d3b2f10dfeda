"""
Progress engine application settings.

Extends the base settings with reward, streak and unlock configuration.
"""

from typing import List

import pytz

from common.config import BaseAppSettings


class Settings(BaseAppSettings):
    """Progress-engine-specific settings."""

    # ==========================================================================
    # Streak Settings
    # ==========================================================================
    # Calendar day boundaries for streaks are taken in this timezone
    STREAK_TIMEZONE: str = "UTC"

    # ==========================================================================
    # Duplicate Suppression
    # ==========================================================================
    # Repeat interactions inside this window are acknowledged without mutation
    DUPLICATE_WINDOW_SECONDS: float = 5.0

    # Client request ids remembered per progress record
    MAX_REQUEST_IDS: int = 20

    # ==========================================================================
    # Course Unlocking
    # ==========================================================================
    MAX_IN_PROGRESS_COURSES: int = 1

    # ==========================================================================
    # Content Defaults
    # ==========================================================================
    DEFAULT_VIDEO_STARS: int = 10
    DEFAULT_VIDEO_REQUIRED_WATCH_COUNT: int = 5
    DEFAULT_BOOK_REQUIRED_READING_COUNT: int = 5

    # ==========================================================================
    # Startup
    # ==========================================================================
    ENSURE_INDEXES_ON_STARTUP: bool = True

    def collect_errors(self) -> List[str]:
        errors = super().collect_errors()

        if self.STREAK_TIMEZONE not in pytz.all_timezones_set:
            errors.append(f"STREAK_TIMEZONE '{self.STREAK_TIMEZONE}' is not a known timezone")

        if self.MAX_IN_PROGRESS_COURSES < 1:
            errors.append("MAX_IN_PROGRESS_COURSES must be at least 1")

        if self.DUPLICATE_WINDOW_SECONDS < 0:
            errors.append("DUPLICATE_WINDOW_SECONDS cannot be negative")

        if self.MAX_REQUEST_IDS < 1:
            errors.append("MAX_REQUEST_IDS must be at least 1")

        return errors


# Global settings instance
settings = Settings()
