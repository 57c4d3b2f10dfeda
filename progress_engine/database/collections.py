"""
Collection names used by the progress engine.

Content collections are listed in the content registry; these are the
collections the engine reads for identity and the ones it owns.
"""

# ─────────────────────────────────────────────────────────────────
# Read-only collaborators
# ─────────────────────────────────────────────────────────────────

CHILD_PROFILES = "childprofiles"
BADGES = "badges"
COURSES = "courses"

# ─────────────────────────────────────────────────────────────────
# Owned by the engine
# ─────────────────────────────────────────────────────────────────

PROGRESS_RECORDS = "progressrecords"
STAR_EARNINGS = "starearnings"
CHILD_STATS = "childstats"
COURSE_PROGRESS = "courseprogress"
