"""Progress record state and completion rules."""

from progress_engine.services.progress.progress_service import ProgressRecordService

__all__ = ["ProgressRecordService"]
