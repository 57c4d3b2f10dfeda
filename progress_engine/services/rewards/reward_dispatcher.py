"""
Reward dispatcher.

Entry point for every progress interaction. Applies the completion rule,
persists the progress transition, then pays what the record is owed:
ledger entries, stars and streak, the kind's stats counter, badges and
course progress.

Ordering per (child, content):
    1. serialize on a per-key lock
    2. drop duplicate submissions
    3. persist the progress transition (versioned write)
    4. write owed ledger entries (idempotency keys)
    5. add stars to the aggregate for entries this call created
    6. flag the record as rewarded
    7. on first completion: stats counter, badges, course sync

Steps 4-7 never undo step 3. When they fail the result says rewardPending
and the next interaction with the same content settles what is owed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from common.concurrency import KeyedLock
from common.utils.exceptions import ConflictException, NotFoundException
from progress_engine.content import ContentRef, ContentUnit, ExploreVideoUnit, get_kind_spec
from progress_engine.schemas.progress import InteractionPayload
from progress_engine.services.content.catalog_service import ContentCatalogService
from progress_engine.services.progress.completion_rules import (
    STATUS_COMPLETED,
    apply_interaction,
    is_counted_event,
    pending_rewards,
    review_transition,
    stars_for,
    start_transition,
)
from progress_engine.services.progress.progress_service import ProgressRecordService
from progress_engine.services.rewards.badge_service import BadgeService
from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.stats_service import ChildStatsService

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


@dataclass
class RewardResult:
    """Outcome of one progress call."""
    progress: Dict[str, Any]
    stars_just_awarded: bool = False
    stars_earned_now: int = 0
    stars_to_award: int = 0
    total_stars: Optional[int] = None
    new_badge: Optional[Dict[str, Any]] = None
    new_badges: List[Dict[str, Any]] = field(default_factory=list)
    duplicate: bool = False
    is_replay: bool = False
    reward_pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "progress": self.progress,
            "starsJustAwarded": self.stars_just_awarded,
            "starsEarnedNow": self.stars_earned_now,
            "starsToAward": self.stars_to_award,
            "totalStars": self.total_stars,
            "newBadge": self.new_badge,
            "newBadges": self.new_badges,
            "duplicate": self.duplicate,
            "isReplay": self.is_replay,
            "rewardPending": self.reward_pending,
        }


class RewardDispatcher:
    """
    Orchestrates progress transitions and the rewards they trigger.
    """

    def __init__(
        self,
        catalog: ContentCatalogService,
        progress_service: ProgressRecordService,
        ledger_service: StarLedgerService,
        stats_service: ChildStatsService,
        badge_service: BadgeService,
        course_service=None,
        lock: Optional[KeyedLock] = None,
    ):
        """
        Initialize RewardDispatcher.

        Args:
            catalog: Child and content lookups
            progress_service: Progress record persistence
            ledger_service: Star ledger
            stats_service: Child stats aggregate
            badge_service: Badge awards
            course_service: Optional CourseProgressService for course sync
            lock: Per-(child, content) lock, shared by every dispatcher
                in the process
        """
        self._catalog = catalog
        self._progress = progress_service
        self._ledger = ledger_service
        self._stats = stats_service
        self._badges = badge_service
        self._courses = course_service
        self._lock = lock or KeyedLock()

    async def _resolve(self, child_id: str, kind: str, content_id: str):
        ref = ContentRef.parse(kind, content_id)
        await self._catalog.get_child(child_id)
        unit = await self._catalog.get_unit(ref)
        return ref, unit

    @staticmethod
    def _lock_key(child_id: str, ref: ContentRef) -> tuple:
        return (child_id, *ref.key)

    # ─────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────

    async def start_content(self, child_id: str, kind: str, content_id: str) -> RewardResult:
        """
        Mark a unit as started. Idempotent; no rewards.

        Raises:
            ValidationException: Unknown kind or malformed id
            NotFoundException: Child or content missing
        """
        ref, unit = await self._resolve(child_id, kind, content_id)

        async with self._lock.hold(self._lock_key(child_id, ref)):
            record = await self._progress.get_or_create(child_id, ref)
            for _ in range(MAX_WRITE_ATTEMPTS):
                transition = start_transition(record, self._progress.now())
                if transition is None:
                    break
                updated = await self._progress.apply_transition(record, transition)
                if updated is not None:
                    record = updated
                    logger.info(f"Child {child_id} started {ref.kind.value} {ref.content_id}")
                    break
                record = await self._progress.get(child_id, ref)
            else:
                raise self._write_conflict(ref)

        return RewardResult(
            progress=self._progress.format_record(record),
            stars_to_award=stars_for(unit),
            is_replay=self._is_replay(unit),
        )

    async def record_interaction(
        self,
        child_id: str,
        kind: str,
        content_id: str,
        payload: InteractionPayload,
    ) -> RewardResult:
        """
        Apply one interaction and pay any rewards it unlocks.

        Repeating a call (same requestId, or a counter kind inside the
        duplicate window) changes nothing and writes no ledger entries.

        Raises:
            ValidationException: Invalid payload, kind, id or locked content
            NotFoundException: Child or content missing
            ConflictException: The record kept changing under concurrent writers
        """
        ref, unit = await self._resolve(child_id, kind, content_id)

        async with self._lock.hold(self._lock_key(child_id, ref)):
            record = await self._progress.get_or_create(child_id, ref)

            if self._progress.is_duplicate(record, payload.requestId, is_counted_event(ref.kind, payload)):
                logger.info(
                    f"Duplicate {ref.kind.value} interaction for child {child_id} "
                    f"on {ref.content_id} (requestId={payload.requestId})"
                )
                result = await self._settle(child_id, unit, record)
                result.duplicate = True
                return result

            for _ in range(MAX_WRITE_ATTEMPTS):
                transition = apply_interaction(unit, record, payload, self._progress.now())
                updated = await self._progress.apply_transition(record, transition, payload.requestId)
                if updated is not None:
                    record = updated
                    break
                record = await self._progress.get(child_id, ref)
            else:
                raise self._write_conflict(ref)

            if transition.newly_completed:
                logger.info(f"Child {child_id} completed {ref.kind.value} {ref.content_id}")

            return await self._settle(child_id, unit, record)

    async def record_completion(self, child_id: str, kind: str, content_id: str, **fields) -> RewardResult:
        """Shorthand for an interaction that completes a lesson, activity or chant."""
        payload = InteractionPayload(completed=True, **fields)
        return await self.record_interaction(child_id, kind, content_id, payload)

    async def review_audio_assignment(
        self,
        child_id: str,
        content_id: str,
        decision: str,
        note: Optional[str] = None,
    ) -> RewardResult:
        """
        Approve or reject a submitted recording. Approval pays the stars.

        Raises:
            NotFoundException: No submission exists
            ValidationException: Not awaiting review or unknown decision
        """
        ref, unit = await self._resolve(child_id, "audio_assignment", content_id)

        async with self._lock.hold(self._lock_key(child_id, ref)):
            record = await self._progress.get(child_id, ref)
            if record is None:
                raise NotFoundException(message="No submission for this assignment", code="PROGRESS_NOT_FOUND")

            transition = review_transition(record, decision, note, self._progress.now())
            updated = await self._progress.apply_transition(record, transition)
            if updated is None:
                raise self._write_conflict(ref)

            logger.info(f"Audio assignment {content_id} for child {child_id} {decision}")
            return await self._settle(child_id, unit, updated)

    async def reset_progress(self, child_id: str, kind: str, content_id: str, reason: str) -> Dict[str, Any]:
        """
        Reverse a unit's awards and return its record to not_started.

        Every live award for the unit gets a compensating reversal entry and
        its stars are removed from the aggregate. Stats counters, streaks
        and badges are history and stay as they are.

        Returns:
            dict with progress, starsReversed and reversals
        """
        ref, _ = await self._resolve(child_id, kind, content_id)
        spec = get_kind_spec(ref.kind)

        async with self._lock.hold(self._lock_key(child_id, ref)):
            record = await self._progress.get(child_id, ref)
            if record is None:
                raise NotFoundException(message="Progress not found", code="PROGRESS_NOT_FOUND")

            reversed_stars = 0
            reversal_ids = []
            for award in await self._ledger.find_live_awards(child_id, spec.source_type, ref.content_id):
                entry, created = await self._ledger.append_reversal(award, reason)
                if created:
                    await self._stats.remove_stars(child_id, award["stars"])
                    reversed_stars += award["stars"]
                    reversal_ids.append(str(entry["_id"]))

            record = await self._progress.reset(record)

        logger.info(f"Reset {ref.kind.value} {ref.content_id} for child {child_id}, reversed {reversed_stars} stars")
        return {
            "progress": self._progress.format_record(record),
            "starsReversed": reversed_stars,
            "reversals": reversal_ids,
        }

    # ─────────────────────────────────────────────────────────────────
    # Settlement
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _is_replay(unit: ContentUnit) -> bool:
        return isinstance(unit, ExploreVideoUnit) and unit.is_replay

    @staticmethod
    def _write_conflict(ref: ContentRef) -> ConflictException:
        return ConflictException(
            message="Progress changed concurrently, retry the request",
            code="PROGRESS_WRITE_CONFLICT",
            details={"contentType": ref.kind.value, "contentId": ref.content_id},
        )

    async def _settle(self, child_id: str, unit: ContentUnit, record: Dict[str, Any]) -> RewardResult:
        """Pay whatever the record is owed and run first-completion effects."""
        result = RewardResult(
            progress=self._progress.format_record(record),
            stars_to_award=stars_for(unit),
            is_replay=self._is_replay(unit),
        )

        if result.is_replay:
            return result

        try:
            record = await self._pay(child_id, unit, record, result)
            first_completion = (
                record["status"] == STATUS_COMPLETED
                and await self._progress.claim_counted(record["_id"])
            )
            if first_completion:
                try:
                    await self._on_first_completion(child_id, unit, result)
                except Exception:
                    await self._progress.release_counted(record["_id"])
                    raise
            if first_completion or result.stars_just_awarded or result.new_badge:
                result.new_badges = await self._badges.check_threshold_badges(child_id)
            stats = await self._stats.get_or_create(child_id)
            result.total_stars = stats.get("totalStars", 0)
        except Exception as e:
            logger.error(
                f"Reward settlement failed for child {child_id} on "
                f"{unit.kind.value} {unit.content_id}: {e}"
            )
            result.reward_pending = True

        result.progress = self._progress.format_record(record)
        return result

    async def _pay(
        self,
        child_id: str,
        unit: ContentUnit,
        record: Dict[str, Any],
        result: RewardResult,
    ) -> Dict[str, Any]:
        lines = pending_rewards(unit, record, child_id)
        if not lines:
            return record

        spec = get_kind_spec(unit.kind)
        for line in lines:
            _, created = await self._ledger.record_once(
                child_id=child_id,
                stars=line.stars,
                source_type=spec.source_type,
                content_id=unit.content_id,
                content_model=spec.source_model,
                idempotency_key=line.idempotency_key,
                description=line.description,
                metadata=line.metadata,
            )
            if created:
                await self._stats.add_stars(child_id, line.stars)
                result.stars_earned_now += line.stars

        fields: Dict[str, Any] = {}
        readings = [line.reading_number for line in lines if line.reading_number]
        if readings:
            fields["readingsRewarded"] = max(readings)
        if record["status"] == STATUS_COMPLETED:
            fields["starsAwarded"] = True
            fields["starsAwardedAt"] = self._progress.now()

        result.stars_just_awarded = result.stars_earned_now > 0
        return await self._progress.mark_rewarded(record, sum(line.stars for line in lines), fields)

    async def _on_first_completion(self, child_id: str, unit: ContentUnit, result: RewardResult) -> None:
        """
        Completion side effects, run once per reward cycle.

        Everything before the counter bump is safe to repeat, so a claim
        released after a failure can run the whole sequence again.
        """
        if not result.stars_just_awarded:
            # Zero-star completions still count as activity for the streak
            await self._stats.update_streak(child_id)

        result.new_badge = await self._badges.award_badge(child_id, unit.badge_id)

        if self._courses is not None:
            try:
                await self._courses.sync_content_completion(child_id, unit.ref)
            except Exception as e:
                logger.warning(f"Course sync failed for child {child_id} on {unit.content_id}: {e}")

        spec = get_kind_spec(unit.kind)
        await self._stats.increment_counter(child_id, spec.counter_field)
