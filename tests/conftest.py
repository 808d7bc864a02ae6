"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from vip_wager_tracker.storage.database import DatabaseManager
from vip_wager_tracker.storage.repos import (
    RawWagerStatsDTO,
    RawWagerStatsRepository,
    UserRepository,
)
from vip_wager_tracker.wagers.cache import CacheCoordinator
from vip_wager_tracker.wagers.computer import StatsComputer
from vip_wager_tracker.wagers.ledger import AdjustmentLedger
from vip_wager_tracker.wagers.ranking import RankingEngine

SeedUser = Callable[..., Awaitable[str]]


def make_redis_mock() -> AsyncMock:
    """AsyncMock Redis client backed by a dict (GET/SET/DELETE/SCAN)."""
    store: dict[str, Any] = {}
    redis = AsyncMock()

    async def _get(key: str) -> Any:
        return store.get(key)

    async def _set(key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in store:
            return None
        store[key] = value
        return True

    async def _delete(*keys: Any) -> int:
        removed = 0
        for key in keys:
            name = key.decode() if isinstance(key, bytes) else key
            if store.pop(name, None) is not None:
                removed += 1
        return removed

    async def _scan(cursor: int = 0, match: str | None = None, count: int | None = None) -> Any:
        prefix = (match or "*").rstrip("*")
        return 0, [key for key in list(store) if key.startswith(prefix)]

    redis.get = AsyncMock(side_effect=_get)
    redis.set = AsyncMock(side_effect=_set)
    redis.delete = AsyncMock(side_effect=_delete)
    redis.scan = AsyncMock(side_effect=_scan)
    redis.store = store
    return redis


@pytest.fixture
async def db():
    """In-memory SQLite database shared across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    manager = DatabaseManager.from_engine(engine)
    await manager.init_schema()
    yield manager
    await manager.dispose()


@pytest.fixture
def mock_redis() -> AsyncMock:
    return make_redis_mock()


@pytest.fixture
def cache(mock_redis: AsyncMock, db: DatabaseManager) -> CacheCoordinator:
    return CacheCoordinator(mock_redis, db)


@pytest.fixture
def computer(db: DatabaseManager, cache: CacheCoordinator) -> StatsComputer:
    return StatsComputer(db, cache)


@pytest.fixture
def ranking(db: DatabaseManager, cache: CacheCoordinator) -> RankingEngine:
    return RankingEngine(db, cache)


@pytest.fixture
def ledger(db: DatabaseManager, computer: StatsComputer) -> AdjustmentLedger:
    return AdjustmentLedger(db, computer)


@pytest.fixture
def seed_user(db: DatabaseManager, computer: StatsComputer) -> SeedUser:
    """Create (or re-sync) a user with raw stats and computed stats.

    Returns the local user id.
    """

    async def _seed(
        external_id: str,
        *,
        daily: Any = 0,
        weekly: Any = 0,
        monthly: Any = 0,
        all_time: Any = 0,
        username: str | None = None,
    ) -> str:
        async with db.get_async_session() as session:
            users = UserRepository(session)
            user = await users.get_by_external_id(external_id)
            if user is None:
                user = await users.create_placeholder(
                    external_id=external_id, username=username or f"player_{external_id}"
                )

        raw = RawWagerStatsDTO(
            user_id=user.id,
            external_id=external_id,
            username=user.username,
            daily=Decimal(str(daily)),
            weekly=Decimal(str(weekly)),
            monthly=Decimal(str(monthly)),
            all_time=Decimal(str(all_time)),
            last_sync_at=datetime.now(UTC),
        )

        async def upsert(session):
            return await RawWagerStatsRepository(session).upsert(raw)

        await computer.apply(user.id, upsert)
        return user.id

    return _seed
