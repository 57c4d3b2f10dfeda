"""
Completion rules per content kind.

Pure functions: given a typed content unit, the current progress record
and an interaction payload, compute the record's next state and the star
rewards it is owed. No database access happens here; the progress service
persists the result and the reward dispatcher pays the rewards.

State machine:
    not_started -> in_progress -> completed
    audio assignments: in_progress -> submitted -> completed | rejected
    rejected -> submitted (resubmission)
    completed is terminal until an admin reset.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from common.utils.exceptions import ValidationException
from progress_engine.content import (
    ActivityUnit,
    AudioAssignmentUnit,
    BookUnit,
    ChantUnit,
    ContentKind,
    ContentUnit,
    ExploreVideoUnit,
    LessonUnit,
    VideoUnit,
    get_kind_spec,
)
from progress_engine.schemas.progress import InteractionPayload
from progress_engine.services.rewards.ledger_service import StarLedgerService

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_LOCKED = "locked"
STATUS_SKIPPED = "skipped"
STATUS_SUBMITTED = "submitted"
STATUS_REJECTED = "rejected"

WATCH_HISTORY_LIMIT = 50


@dataclass
class Transition:
    """Next state of a progress record after one interaction."""
    updates: Dict[str, Any]
    status: str
    newly_completed: bool = False


@dataclass
class RewardLine:
    """One ledger award a record is owed."""
    idempotency_key: str
    stars: int
    description: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    reading_number: Optional[int] = None


# ─────────────────────────────────────────────────────────────────
# Payload validation
# ─────────────────────────────────────────────────────────────────

def validate_payload(payload: InteractionPayload) -> None:
    """
    Reject out-of-range values.

    Raises:
        ValidationException: On any invalid field
    """
    errors = []

    if payload.completionPercentage is not None and not 0 <= payload.completionPercentage <= 100:
        errors.append("completionPercentage must be between 0 and 100")

    if payload.timeSpent is not None and payload.timeSpent < 0:
        errors.append("timeSpent cannot be negative")

    if payload.timeSpentDelta is not None and payload.timeSpentDelta < 0:
        errors.append("timeSpentDelta cannot be negative")

    if payload.score is not None:
        if payload.maxScore is None or payload.maxScore <= 0:
            errors.append("maxScore must be positive when score is given")
        elif not 0 <= payload.score <= payload.maxScore:
            errors.append("score must be between 0 and maxScore")

    if errors:
        raise ValidationException(message=errors[0], code="INVALID_PAYLOAD", errors=errors)


# ─────────────────────────────────────────────────────────────────
# Shared helpers
# ─────────────────────────────────────────────────────────────────

def _percentage(count: int, required: int) -> int:
    if required <= 0:
        return 100
    return min(100, round(count / required * 100))


def _adjusted_count(current: int, payload: InteractionPayload, label: str) -> int:
    delta = 1 if payload.countDelta is None else payload.countDelta
    new_count = current + delta
    if new_count < 0:
        raise ValidationException(
            message=f"{label} cannot go below zero",
            code="NEGATIVE_COUNT",
            details={"current": current, "delta": delta},
        )
    return new_count


def _common_updates(record: Dict[str, Any], payload: InteractionPayload, now: datetime) -> Dict[str, Any]:
    updates: Dict[str, Any] = {"lastInteractionAt": now}

    stored_time = record.get("timeSpent", 0) or 0
    if payload.timeSpentDelta is not None:
        updates["timeSpent"] = stored_time + payload.timeSpentDelta
    elif payload.timeSpent is not None:
        updates["timeSpent"] = max(stored_time, payload.timeSpent)

    if payload.metadata:
        updates["metadata"] = {**record.get("metadata", {}), **payload.metadata}

    return updates


def _next_status(current: str, satisfied: bool) -> str:
    if current == STATUS_COMPLETED or satisfied:
        return STATUS_COMPLETED
    return STATUS_IN_PROGRESS


# ─────────────────────────────────────────────────────────────────
# Per-kind rules: (unit, record, payload, now) -> (updates, status)
# ─────────────────────────────────────────────────────────────────

def _lesson_rule(unit: LessonUnit, record, payload, now):
    updates = {}
    pct = record.get("progressPercentage", 0)
    if payload.completionPercentage is not None:
        pct = max(pct, round(payload.completionPercentage))

    satisfied = bool(payload.completed) or pct >= 100
    if satisfied:
        pct = 100
    updates["progressPercentage"] = pct
    return updates, _next_status(record["status"], satisfied)


def _activity_rule(unit: ActivityUnit, record, payload, now):
    updates = {}
    satisfied = bool(payload.completed)

    if payload.score is not None:
        pct = payload.score / payload.maxScore * 100
        best = record.get("score")
        if best is None or payload.score >= best:
            updates["score"] = payload.score
            updates["maxScore"] = payload.maxScore
        satisfied = satisfied or pct >= unit.passing_score
        updates["progressPercentage"] = max(record.get("progressPercentage", 0), round(pct))

    if satisfied:
        updates["progressPercentage"] = 100
    return updates, _next_status(record["status"], satisfied)


def _chant_rule(unit: ChantUnit, record, payload, now):
    if payload.completed and not payload.recordedAudioRef:
        raise ValidationException(
            message="Recorded audio file is required",
            code="RECORDING_REQUIRED",
        )

    updates = {}
    satisfied = bool(payload.recordedAudioRef)
    if satisfied:
        updates["recordedAudioRef"] = payload.recordedAudioRef
        updates["progressPercentage"] = 100
    return updates, _next_status(record["status"], satisfied)


def _audio_assignment_rule(unit: AudioAssignmentUnit, record, payload, now):
    status = record["status"]
    if status == STATUS_COMPLETED:
        return {}, STATUS_COMPLETED

    if payload.completed and not payload.recordedAudioRef:
        raise ValidationException(
            message="Recorded audio file is required",
            code="RECORDING_REQUIRED",
        )

    if payload.recordedAudioRef:
        return (
            {"recordedAudioRef": payload.recordedAudioRef, "submittedAt": now, "reviewNote": None},
            STATUS_SUBMITTED,
        )

    if status in (STATUS_SUBMITTED, STATUS_REJECTED):
        return {}, status
    return {}, STATUS_IN_PROGRESS


def _book_rule(unit: BookUnit, record, payload, now):
    updates = {}
    count = record.get("readingCount", 0)
    if payload.readingSessionComplete:
        count = _adjusted_count(count, payload, "Reading count")
        updates["readingCount"] = count
        updates["lastReadingAt"] = now

    satisfied = count >= unit.required_reading_count
    updates["progressPercentage"] = _percentage(count, unit.required_reading_count)
    return updates, _next_status(record["status"], satisfied)


def _watch_updates(record, payload, now, required: int):
    count = _adjusted_count(record.get("watchCount", 0), payload, "Watch count")
    completion = 100 if payload.completionPercentage is None else payload.completionPercentage
    history = list(record.get("watchHistory", []))
    history.append({"watchedAt": now, "completionPercentage": max(0, min(100, completion))})

    updates = {
        "watchCount": count,
        "watchHistory": history[-WATCH_HISTORY_LIMIT:],
        "progressPercentage": _percentage(count, required),
    }
    return updates, count >= required


def _video_rule(unit: VideoUnit, record, payload, now):
    updates, satisfied = _watch_updates(record, payload, now, unit.required_watch_count)
    return updates, _next_status(record["status"], satisfied)


def _explore_video_rule(unit: ExploreVideoUnit, record, payload, now):
    updates, satisfied = _watch_updates(record, payload, now, 1)
    updates["isReplay"] = unit.is_replay
    return updates, _next_status(record["status"], satisfied)


RULES: Dict[ContentKind, Callable] = {
    ContentKind.LESSON: _lesson_rule,
    ContentKind.LESSON_ITEM: _lesson_rule,
    ContentKind.ACTIVITY: _activity_rule,
    ContentKind.CHANT: _chant_rule,
    ContentKind.AUDIO_ASSIGNMENT: _audio_assignment_rule,
    ContentKind.BOOK: _book_rule,
    ContentKind.VIDEO: _video_rule,
    ContentKind.EXPLORE_VIDEO: _explore_video_rule,
}


def is_counted_event(kind: ContentKind, payload: InteractionPayload) -> bool:
    """Whether the interaction adds a watch or a reading to the record."""
    if kind == ContentKind.BOOK:
        return bool(payload.readingSessionComplete)
    return get_kind_spec(kind).counts_repeats


# ─────────────────────────────────────────────────────────────────
# Transitions
# ─────────────────────────────────────────────────────────────────

def transition_fields(record: Dict[str, Any], status: str, now: datetime) -> Dict[str, Any]:
    """
    Timestamp and attempt bookkeeping for moving record to status.

    startedAt and completedAt are only ever set when unset. attempts grows
    by one on each transition into in_progress or completed.
    """
    updates: Dict[str, Any] = {}
    previous = record["status"]
    if status == previous:
        return updates

    updates["status"] = status
    if status in (STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_SUBMITTED):
        if not record.get("startedAt"):
            updates["startedAt"] = now
    if status in (STATUS_IN_PROGRESS, STATUS_COMPLETED):
        updates["attempts"] = record.get("attempts", 0) + 1
    if status == STATUS_COMPLETED and not record.get("completedAt"):
        updates["completedAt"] = now
    return updates


def apply_interaction(
    unit: ContentUnit,
    record: Dict[str, Any],
    payload: InteractionPayload,
    now: datetime,
) -> Transition:
    """
    Compute the next state of a record for one interaction.

    Raises:
        ValidationException: For invalid payloads or locked content
    """
    if record["status"] == STATUS_LOCKED:
        raise ValidationException(message="Content is locked", code="CONTENT_LOCKED")

    validate_payload(payload)

    # A skipped item can be resumed; it behaves as not started
    working = dict(record)
    if working["status"] == STATUS_SKIPPED:
        working["status"] = STATUS_NOT_STARTED

    updates = _common_updates(working, payload, now)
    kind_updates, status = RULES[unit.kind](unit, working, payload, now)
    updates.update(kind_updates)
    updates.update(transition_fields(working, status, now))
    if record["status"] == STATUS_SKIPPED and "status" not in updates:
        updates["status"] = status

    return Transition(
        updates=updates,
        status=status,
        newly_completed=status == STATUS_COMPLETED and record["status"] != STATUS_COMPLETED,
    )


def start_transition(record: Dict[str, Any], now: datetime) -> Optional[Transition]:
    """
    Move a not-started (or skipped) record to in_progress.

    Returns:
        The transition, or None when the record is already past starting
    """
    if record["status"] not in (STATUS_NOT_STARTED, STATUS_SKIPPED):
        return None

    working = {**record, "status": STATUS_NOT_STARTED}
    updates = {"lastInteractionAt": now, **transition_fields(working, STATUS_IN_PROGRESS, now)}
    return Transition(updates=updates, status=STATUS_IN_PROGRESS)


def review_transition(
    record: Dict[str, Any],
    decision: str,
    note: Optional[str],
    now: datetime,
) -> Transition:
    """
    Apply a reviewer decision to a submitted audio assignment.

    Raises:
        ValidationException: If the record is not awaiting review or the
            decision is unknown
    """
    if decision not in ("approved", "rejected"):
        raise ValidationException(message=f"Unknown review decision: {decision}", code="INVALID_DECISION")

    if record["status"] != STATUS_SUBMITTED:
        raise ValidationException(
            message="Audio assignment is not awaiting review",
            code="NOT_SUBMITTED",
            details={"status": record["status"]},
        )

    status = STATUS_COMPLETED if decision == "approved" else STATUS_REJECTED
    updates = {"reviewedAt": now, "reviewNote": note, "lastInteractionAt": now}
    if status == STATUS_COMPLETED:
        updates["progressPercentage"] = 100
    updates.update(transition_fields(record, status, now))

    return Transition(updates=updates, status=status, newly_completed=status == STATUS_COMPLETED)


# ─────────────────────────────────────────────────────────────────
# Rewards owed
# ─────────────────────────────────────────────────────────────────

def stars_for(unit: ContentUnit) -> int:
    """Total stars a unit pays out over a full completion."""
    if isinstance(unit, BookUnit):
        return unit.incremental_stars + unit.bonus_stars
    if isinstance(unit, ExploreVideoUnit) and unit.is_replay:
        return 0
    return getattr(unit, "stars_awarded", 0)


def pending_rewards(unit: ContentUnit, record: Dict[str, Any], child_id: str) -> List[RewardLine]:
    """
    Awards the record has earned but not yet been flagged for.

    Lines are keyed by the ledger idempotency keys, so emitting a line
    that was already written (crash before the record was flagged) is safe.
    """
    if record.get("starsAwarded"):
        return []

    spec = get_kind_spec(unit.kind)
    cycle = record.get("rewardCycle", 0)

    if isinstance(unit, BookUnit):
        lines = []
        counted = min(record.get("readingCount", 0), unit.required_reading_count)
        if unit.stars_per_reading > 0:
            for reading in range(record.get("readingsRewarded", 0) + 1, counted + 1):
                lines.append(RewardLine(
                    idempotency_key=StarLedgerService.reading_key(child_id, unit.content_id, cycle, reading),
                    stars=unit.stars_per_reading,
                    description=f"Earned {unit.stars_per_reading} stars for reading \"{unit.title}\" ({reading}/{unit.required_reading_count})",
                    metadata={"bookTitle": unit.title, "readingNumber": reading},
                    reading_number=reading,
                ))
        if record["status"] == STATUS_COMPLETED and unit.bonus_stars > 0:
            lines.append(RewardLine(
                idempotency_key=StarLedgerService.bonus_key(child_id, unit.content_id, cycle),
                stars=unit.bonus_stars,
                description=f"Earned {unit.bonus_stars} bonus stars for finishing \"{unit.title}\"",
                metadata={"bookTitle": unit.title, "requiredReadingCount": unit.required_reading_count, "bonus": True},
            ))
        return lines

    if record["status"] != STATUS_COMPLETED:
        return []

    stars = stars_for(unit)
    if stars <= 0:
        return []

    metadata: Dict[str, Any] = {"title": unit.title}
    if isinstance(unit, VideoUnit):
        metadata.update({"watchCount": record.get("watchCount", 0), "requiredWatchCount": unit.required_watch_count})
    elif isinstance(unit, ExploreVideoUnit):
        metadata.update({"videoType": unit.video_type, "watchCount": record.get("watchCount", 0)})

    return [RewardLine(
        idempotency_key=StarLedgerService.award_key(child_id, spec.source_type, unit.content_id, cycle),
        stars=stars,
        description=f"Earned {stars} stars for completing \"{unit.title}\"",
        metadata=metadata,
    )]
