"""Shared enumerations for the wager engine."""

from __future__ import annotations

from enum import Enum


class Timeframe(str, Enum):
    """Wager accumulation bucket.

    The value doubles as the external API's ``timeframe`` query parameter
    and as the column suffix used by the storage layer.
    """

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"

    @classmethod
    def parse(cls, value: str | Timeframe) -> Timeframe:
        """Parse a timeframe, accepting the aliases used by admin clients."""
        if isinstance(value, Timeframe):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        aliases = {
            "today": cls.DAILY,
            "alltime": cls.ALL_TIME,
            "this_week": cls.WEEKLY,
            "this_month": cls.MONTHLY,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


ALL_TIMEFRAMES: tuple[Timeframe, ...] = tuple(Timeframe)


class AdjustmentType(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    SET = "set"


class AdjustmentStatus(str, Enum):
    """Ledger entry status. The only transition is ACTIVE -> REVERTED."""

    ACTIVE = "active"
    REVERTED = "reverted"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    USER_SPECIFIC = "user_specific"


class ApiStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class SetAdjustmentPolicy(str, Enum):
    """How ``set`` adjustments behave when raw stats move after creation.

    FROZEN_DELTA keeps the delta computed at creation time, so a later
    re-sync shifts the final value away from the admin's target.
    ABSOLUTE_OVERRIDE re-anchors the timeframe to the latest active ``set``
    target on every recompute.
    """

    FROZEN_DELTA = "frozen_delta"
    ABSOLUTE_OVERRIDE = "absolute_override"
