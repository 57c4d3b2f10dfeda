"""
Pipeline functions.

Stateless orchestration across services, called by the routers.
"""

from progress_engine.pipelines.progress import (
    start_content_pipeline,
    record_interaction_pipeline,
    get_progress_pipeline,
    get_child_stats_pipeline,
    get_star_history_pipeline,
    reset_progress_pipeline,
    review_audio_assignment_pipeline,
    get_child_courses_pipeline,
    get_course_progress_pipeline,
    complete_course_pipeline,
    reconcile_stats_pipeline,
)

__all__ = [
    "start_content_pipeline",
    "record_interaction_pipeline",
    "get_progress_pipeline",
    "get_child_stats_pipeline",
    "get_star_history_pipeline",
    "reset_progress_pipeline",
    "review_audio_assignment_pipeline",
    "get_child_courses_pipeline",
    "get_course_progress_pipeline",
    "complete_course_pipeline",
    "reconcile_stats_pipeline",
]
