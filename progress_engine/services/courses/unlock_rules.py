"""
Course unlock rules.

Pure functions over course documents and the set of completed
(contentKind, contentId) items: percentages, step gating, course
ordering and the in-progress cap.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Set, Tuple

COURSE_NOT_STARTED = "not_started"
COURSE_IN_PROGRESS = "in_progress"
COURSE_COMPLETED = "completed"
COURSE_LOCKED = "locked"

ACTIVE_STATUSES = (COURSE_NOT_STARTED, COURSE_IN_PROGRESS)

ItemKey = Tuple[str, str]


def progress_percentage(completed: int, total: int) -> int:
    """Whole percent, halves rounded up (2.5 -> 3). 0 for an empty course."""
    if total <= 0:
        return 0
    value = Decimal(completed) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def course_items(course: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Normalized course contents: contentId as str, step defaults to 1."""
    items = []
    for item in course.get("contents", []):
        items.append({
            "contentId": str(item["contentId"]),
            "contentKind": item["contentKind"],
            "step": int(item.get("step") or 1),
            "required": item.get("required", True) is not False,
        })
    return items


def find_item(course: Dict[str, Any], content_kind: str, content_id: str) -> Dict[str, Any]:
    """The course entry for a unit, or an empty dict."""
    for item in course_items(course):
        if item["contentKind"] == content_kind and item["contentId"] == str(content_id):
            return item
    return {}


def steps_of(course: Dict[str, Any]) -> List[int]:
    return sorted({item["step"] for item in course_items(course)}) or [1]


def is_step_completed(step: int, course: Dict[str, Any], done: Set[ItemKey]) -> bool:
    """
    Every required item of the step is completed.

    A step with no required items counts as completed.
    """
    return all(
        (item["contentKind"], item["contentId"]) in done
        for item in course_items(course)
        if item["step"] == step and item["required"]
    )


def completed_steps(course: Dict[str, Any], done: Set[ItemKey]) -> List[int]:
    """Leading run of fully completed steps; stops at the first open one."""
    steps = []
    for step in steps_of(course):
        if not is_step_completed(step, course, done):
            break
        steps.append(step)
    return steps


def compute_current_step(course: Dict[str, Any], done: Set[ItemKey]) -> int:
    """
    First step that is not fully completed, walking steps in order.

    A completed later step never moves the child past an unfinished
    earlier one. When every step is done the last step is current.
    """
    steps = steps_of(course)
    for step in steps:
        if not is_step_completed(step, course, done):
            return step
    return steps[-1]


def required_counts(course: Dict[str, Any], done: Set[ItemKey]) -> Tuple[int, int]:
    """(completed required items, total required items)"""
    required = [
        (item["contentKind"], item["contentId"])
        for item in course_items(course)
        if item["required"]
    ]
    return sum(1 for key in required if key in done), len(required)


def compute_course_status(course: Dict[str, Any], done: Set[ItemKey], current_status: str) -> str:
    """Status implied by completed items; completed is terminal."""
    if current_status == COURSE_COMPLETED:
        return COURSE_COMPLETED

    completed, total = required_counts(course, done)
    if total > 0 and completed == total:
        return COURSE_COMPLETED
    if done or current_status == COURSE_IN_PROGRESS:
        return COURSE_IN_PROGRESS
    return current_status


def sort_courses(courses: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Courses with a stepOrder first (ascending), then the rest by createdAt."""
    def key(course):
        step_order = course.get("stepOrder")
        created = course.get("createdAt") or datetime.min
        if step_order is None:
            return (1, 0, created)
        return (0, step_order, created)

    return sorted(courses, key=key)


def apply_in_progress_cap(entries: List[Dict[str, Any]], cap: int = 1) -> List[str]:
    """
    Enforce the limit on courses being worked on at once.

    Args:
        entries: Courses in display order, each with "status" and "accessible"
        cap: Maximum number of in-progress courses

    Returns:
        New status per entry. Completed courses are untouched. The first
        `cap` active courses become in_progress and later active ones are
        locked. When nothing is active, the first accessible locked course
        is unlocked into in_progress.
    """
    nothing_active = not any(entry["status"] in ACTIVE_STATUSES for entry in entries)
    used = 0
    statuses = []

    for entry in entries:
        status = entry["status"]
        if status == COURSE_COMPLETED:
            statuses.append(status)
        elif status in ACTIVE_STATUSES:
            if used < cap:
                used += 1
                statuses.append(COURSE_IN_PROGRESS)
            else:
                statuses.append(COURSE_LOCKED)
        elif status == COURSE_LOCKED and nothing_active and entry["accessible"] and used < cap:
            used += 1
            statuses.append(COURSE_IN_PROGRESS)
        else:
            statuses.append(status)

    return statuses
