"""Data ingestion layer - Affiliate leaderboard API access."""

from vip_wager_tracker.ingestor.circuit_breaker import CircuitBreaker, CircuitBreakerState
from vip_wager_tracker.ingestor.gateway import ExternalSyncGateway
from vip_wager_tracker.ingestor.models import (
    DecodeFailure,
    LeaderboardEntry,
    LeaderboardPage,
    WagerAmounts,
    decode_entry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "DecodeFailure",
    "ExternalSyncGateway",
    "LeaderboardEntry",
    "LeaderboardPage",
    "WagerAmounts",
    "decode_entry",
]
