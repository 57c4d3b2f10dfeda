"""Star ledger, child stats and badges."""

from progress_engine.services.rewards.ledger_service import StarLedgerService
from progress_engine.services.rewards.stats_service import ChildStatsService
from progress_engine.services.rewards.badge_service import BadgeService

__all__ = [
    "StarLedgerService",
    "ChildStatsService",
    "BadgeService",
]
