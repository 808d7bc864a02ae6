"""Storage layer - Database schemas and repositories."""

from vip_wager_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from vip_wager_tracker.storage.models import (
    Base,
    ComputedWagerStatsModel,
    RawWagerStatsModel,
    SyncLogModel,
    UserModel,
    WagerAdjustmentModel,
)
from vip_wager_tracker.storage.repos import (
    AdjustmentPage,
    AdjustmentSearchFilters,
    AdjustmentStats,
    ComputedWagerStatsDTO,
    ComputedWagerStatsRepository,
    LeaderboardPageDTO,
    LinkingStats,
    RawWagerStatsDTO,
    RawWagerStatsRepository,
    SyncLogDTO,
    SyncLogRepository,
    UserDTO,
    UserRepository,
    WagerAdjustmentDTO,
    WagerAdjustmentRepository,
)

__all__ = [
    "AdjustmentPage",
    "AdjustmentSearchFilters",
    "AdjustmentStats",
    "Base",
    "ComputedWagerStatsDTO",
    "ComputedWagerStatsModel",
    "ComputedWagerStatsRepository",
    "DatabaseManager",
    "LeaderboardPageDTO",
    "LinkingStats",
    "RawWagerStatsDTO",
    "RawWagerStatsModel",
    "RawWagerStatsRepository",
    "SyncLogDTO",
    "SyncLogModel",
    "SyncLogRepository",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "WagerAdjustmentDTO",
    "WagerAdjustmentModel",
    "WagerAdjustmentRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
