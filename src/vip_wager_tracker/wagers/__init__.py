"""Wager computation - adjustments, computed stats, ranking and caching."""

from vip_wager_tracker.wagers.cache import CacheCoordinator
from vip_wager_tracker.wagers.computer import StatsComputer, UserLockRegistry, merge_stats
from vip_wager_tracker.wagers.ledger import (
    AdjustmentLedger,
    AdjustmentOutcome,
    AuditContext,
    BulkItemResult,
    BulkResult,
    CreateAdjustmentInput,
)
from vip_wager_tracker.wagers.ranking import RankingEngine

__all__ = [
    "AdjustmentLedger",
    "AdjustmentOutcome",
    "AuditContext",
    "BulkItemResult",
    "BulkResult",
    "CacheCoordinator",
    "CreateAdjustmentInput",
    "RankingEngine",
    "StatsComputer",
    "UserLockRegistry",
    "merge_stats",
]
