"""Synchronization with the external affiliate leaderboard."""

from vip_wager_tracker.sync.orchestrator import SyncOrchestrator, SyncResult

__all__ = ["SyncOrchestrator", "SyncResult"]
