"""
Progress engine API routers.

All routers are imported here for easy access.
"""

from progress_engine.routers.progress import router as progress_router
from progress_engine.routers.stats import router as stats_router
from progress_engine.routers.courses import router as courses_router
from progress_engine.routers.admin import router as admin_router

__all__ = [
    "progress_router",
    "stats_router",
    "courses_router",
    "admin_router",
]
