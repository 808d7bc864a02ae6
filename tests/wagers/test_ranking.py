"""Tests for rank recalculation and leaderboard reads."""

from __future__ import annotations

from decimal import Decimal

import pytest

from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import ValidationError
from vip_wager_tracker.storage.repos import ComputedWagerStatsRepository
from vip_wager_tracker.wagers.ledger import AdjustmentLedger, CreateAdjustmentInput
from vip_wager_tracker.wagers.ranking import RankingEngine


async def _ranks(db, user_ids: dict[str, str], timeframe: Timeframe) -> dict[str, int | None]:
    async with db.get_async_session() as session:
        repo = ComputedWagerStatsRepository(session)
        return {name: (await repo.get(uid)).rank(timeframe) for name, uid in user_ids.items()}


class TestRecalculateAllRankings:
    """Tests for RankingEngine.recalculate_all_rankings."""

    @pytest.mark.asyncio
    async def test_ranks_positive_finals_only(self, ranking: RankingEngine, db, seed_user) -> None:
        ids = {
            "low": await seed_user("low", monthly=10, daily=5),
            "high": await seed_user("high", monthly=500),
            "zero": await seed_user("zero", monthly=0, daily=7),
        }

        ranked = await ranking.recalculate_all_rankings()

        assert ranked == {
            Timeframe.DAILY: 2,
            Timeframe.WEEKLY: 0,
            Timeframe.MONTHLY: 2,
            Timeframe.ALL_TIME: 0,
        }
        assert await _ranks(db, ids, Timeframe.MONTHLY) == {"high": 1, "low": 2, "zero": None}
        assert await _ranks(db, ids, Timeframe.DAILY) == {"zero": 1, "low": 2, "high": None}

    @pytest.mark.asyncio
    async def test_single_timeframe(self, ranking: RankingEngine, db, seed_user) -> None:
        ids = {"a": await seed_user("a", daily=1, weekly=1)}

        ranked = await ranking.recalculate_all_rankings(Timeframe.WEEKLY)

        assert ranked == {Timeframe.WEEKLY: 1}
        assert await _ranks(db, ids, Timeframe.WEEKLY) == {"a": 1}
        assert await _ranks(db, ids, Timeframe.DAILY) == {"a": None}

    @pytest.mark.asyncio
    async def test_invalidates_caches(self, ranking: RankingEngine, mock_redis, seed_user) -> None:
        await seed_user("a", daily=1)
        mock_redis.store["leaderboard:daily:100:0"] = "{}"

        await ranking.recalculate_all_rankings(Timeframe.DAILY)

        assert mock_redis.store == {}

    @pytest.mark.asyncio
    async def test_ranks_lag_after_adjustment(
        self, ranking: RankingEngine, ledger: AdjustmentLedger, db, seed_user
    ) -> None:
        ids = {"a": await seed_user("a", daily=100), "b": await seed_user("b", daily=50)}
        await ranking.recalculate_all_rankings(Timeframe.DAILY)

        await ledger.create_adjustment(
            CreateAdjustmentInput(
                external_id="b",
                adjustment_type="add",
                applied_to_timeframe="daily",
                amount=200,
                reason="promo",
            ),
            admin_id="admin-1",
        )
        assert await _ranks(db, ids, Timeframe.DAILY) == {"a": 1, "b": 2}

        await ranking.recalculate_all_rankings(Timeframe.DAILY)
        assert await _ranks(db, ids, Timeframe.DAILY) == {"a": 2, "b": 1}

    @pytest.mark.asyncio
    async def test_adjustment_to_zero_clears_rank(
        self, ranking: RankingEngine, ledger: AdjustmentLedger, db, seed_user
    ) -> None:
        ids = {"a": await seed_user("a", daily=100)}
        await ranking.recalculate_all_rankings(Timeframe.DAILY)

        await ledger.create_adjustment(
            CreateAdjustmentInput(
                external_id="a",
                adjustment_type="subtract",
                applied_to_timeframe="daily",
                amount=500,
                reason="chargeback",
            ),
            admin_id="admin-1",
        )

        assert await _ranks(db, ids, Timeframe.DAILY) == {"a": None}


class TestGetLeaderboard:
    """Tests for RankingEngine.get_leaderboard."""

    @pytest.mark.asyncio
    async def test_leaderboard_payload(self, ranking: RankingEngine, seed_user) -> None:
        await seed_user("a", monthly=100, username="alice")
        await seed_user("b", monthly="250.5", username="bob")
        await seed_user("c", monthly=0)
        await ranking.recalculate_all_rankings(Timeframe.MONTHLY)

        board = await ranking.get_leaderboard(Timeframe.MONTHLY, limit=10)

        assert board["timeframe"] == "monthly"
        assert board["total"] == 2
        assert [e["external_id"] for e in board["entries"]] == ["b", "a"]
        top = board["entries"][0]
        assert top["position"] == 1
        assert top["rank"] == 1
        assert Decimal(top["final"]) == Decimal("250.5")
        assert top["has_adjustments"] is False

    @pytest.mark.asyncio
    async def test_leaderboard_is_cached(self, ranking: RankingEngine, mock_redis, seed_user) -> None:
        await seed_user("a", daily=1)

        first = await ranking.get_leaderboard(Timeframe.DAILY, limit=5, offset=0)

        assert "leaderboard:daily:5:0" in mock_redis.store
        mock_redis.store["leaderboard:daily:5:0"] = '{"cached": true}'
        assert await ranking.get_leaderboard(Timeframe.DAILY, limit=5, offset=0) == {"cached": True}
        assert first["total"] == 1

    @pytest.mark.asyncio
    async def test_offset_positions(self, ranking: RankingEngine, seed_user) -> None:
        for i in range(3):
            await seed_user(f"u{i}", weekly=10 * (i + 1))

        board = await ranking.get_leaderboard(Timeframe.WEEKLY, limit=2, offset=1)

        assert [e["position"] for e in board["entries"]] == [2, 3]
        assert [e["external_id"] for e in board["entries"]] == ["u1", "u0"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit,offset", [(0, 0), (1001, 0), (10, -1)])
    async def test_invalid_paging(self, ranking: RankingEngine, limit: int, offset: int) -> None:
        with pytest.raises(ValidationError):
            await ranking.get_leaderboard(Timeframe.DAILY, limit=limit, offset=offset)
