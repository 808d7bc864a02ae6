"""Data models for the affiliate leaderboard API.

Decoding is explicit: every record in a page becomes either a
:class:`LeaderboardEntry` or a :class:`DecodeFailure`. A malformed record is
never turned into a zero-valued entry.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import ExternalAPIError
from vip_wager_tracker.storage.models import MAX_AMOUNT

# Field-name fallbacks, tried in order. The nested ``wagered`` object is the
# documented shape; the flat names come from older API revisions.
_ID_FIELDS = ("uid", "id", "user_id", "goated_id")
_NAME_FIELDS = ("name", "username")
_AMOUNT_FIELDS: dict[Timeframe, tuple[tuple[str, ...], ...]] = {
    Timeframe.DAILY: (("wagered", "today"), ("today",), ("daily_wagered",)),
    Timeframe.WEEKLY: (("wagered", "this_week"), ("this_week",), ("weekly_wagered",)),
    Timeframe.MONTHLY: (("wagered", "this_month"), ("this_month",), ("monthly_wagered",)),
    Timeframe.ALL_TIME: (("wagered", "all_time"), ("all_time",), ("all_time_wagered",)),
}

_MISSING = object()


class EntryDecodeError(ValueError):
    """Raised when a single leaderboard record cannot be decoded."""


@dataclass(frozen=True)
class WagerAmounts:
    """Wagered amount per timeframe."""

    daily: Decimal = Decimal(0)
    weekly: Decimal = Decimal(0)
    monthly: Decimal = Decimal(0)
    all_time: Decimal = Decimal(0)

    def get(self, timeframe: Timeframe) -> Decimal:
        value: Decimal = getattr(self, timeframe.value)
        return value


@dataclass(frozen=True)
class LeaderboardEntry:
    """One player's row in the affiliate leaderboard."""

    external_id: str
    username: str
    wagered: WagerAmounts
    rank: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> LeaderboardEntry:
        """Decode a leaderboard record.

        Raises:
            EntryDecodeError: If the record has no id, no wager data at all,
                or an amount that is not a finite non-negative number in the
                storable range.
        """
        if not isinstance(data, dict):
            raise EntryDecodeError(f"expected an object, got {type(data).__name__}")

        external_id = _first_present(data, [(f,) for f in _ID_FIELDS])
        if external_id is _MISSING or external_id in (None, ""):
            raise EntryDecodeError("record has no uid")

        username = _first_present(data, [(f,) for f in _NAME_FIELDS])
        if username is _MISSING or username is None:
            username = ""

        amounts: dict[str, Decimal] = {}
        seen_any = False
        for timeframe, paths in _AMOUNT_FIELDS.items():
            raw = _first_present(data, list(paths))
            if raw is _MISSING or raw is None:
                amounts[timeframe.value] = Decimal(0)
                continue
            seen_any = True
            amounts[timeframe.value] = _parse_amount(raw, field=timeframe.value)

        if not seen_any:
            raise EntryDecodeError(f"record {external_id} carries no wager amounts")

        rank = data.get("rank")
        return cls(
            external_id=str(external_id),
            username=str(username),
            wagered=WagerAmounts(**amounts),
            rank=rank if isinstance(rank, int) and not isinstance(rank, bool) else None,
        )


@dataclass(frozen=True)
class DecodeFailure:
    """A record that could not be decoded."""

    index: int
    reason: str
    external_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason, "external_id": self.external_id}


def decode_entry(data: Any, index: int) -> LeaderboardEntry | DecodeFailure:
    """Decode one record into an entry or a typed failure."""
    try:
        return LeaderboardEntry.from_dict(data)
    except EntryDecodeError as e:
        external_id = None
        if isinstance(data, dict):
            for name in _ID_FIELDS:
                if data.get(name) not in (None, ""):
                    external_id = str(data[name])
                    break
        return DecodeFailure(index=index, reason=str(e), external_id=external_id)


@dataclass(frozen=True)
class LeaderboardPage:
    """One page of the leaderboard as returned by the external API."""

    page: int
    total_pages: int
    total_users: int | None
    entries: tuple[LeaderboardEntry, ...]
    failures: tuple[DecodeFailure, ...] = ()

    @classmethod
    def from_response(cls, payload: Any, *, page: int) -> LeaderboardPage:
        """Build a page from the decoded JSON body.

        Accepts ``{"success", "data": [...], "metadata": {...}}`` as well as a
        bare list of records.

        Raises:
            ExternalAPIError: If the envelope itself is unusable.
        """
        metadata: dict[str, Any] = {}
        if isinstance(payload, list):
            records = payload
        elif isinstance(payload, dict):
            if payload.get("success") is False:
                raise ExternalAPIError(f"External API reported failure for page {page}")
            records = payload.get("data")
            if isinstance(records, dict) and isinstance(records.get("data"), list):
                records = records["data"]
            if not isinstance(records, list):
                raise ExternalAPIError(f"External API page {page} has no data array")
            raw_metadata = payload.get("metadata")
            if isinstance(raw_metadata, dict):
                metadata = raw_metadata
        else:
            raise ExternalAPIError(f"Unexpected payload type for page {page}: {type(payload).__name__}")

        entries: list[LeaderboardEntry] = []
        failures: list[DecodeFailure] = []
        for i, record in enumerate(records):
            decoded = decode_entry(record, i)
            if isinstance(decoded, DecodeFailure):
                failures.append(decoded)
            else:
                entries.append(decoded)

        total_pages = _parse_count(metadata.get("totalPages"), field="totalPages", page=page)
        total_users = _parse_count(metadata.get("totalUsers"), field="totalUsers", page=page)
        return cls(
            page=page,
            total_pages=max(total_pages or 1, 1),
            total_users=total_users,
            entries=tuple(entries),
            failures=tuple(failures),
        )


def _first_present(data: dict[str, Any], paths: list[tuple[str, ...]]) -> Any:
    for path in paths:
        node: Any = data
        for key in path:
            if not isinstance(node, dict) or key not in node:
                node = _MISSING
                break
            node = node[key]
        if node is not _MISSING and node is not None:
            return node
    return _MISSING


def _parse_amount(raw: Any, *, field: str) -> Decimal:
    if isinstance(raw, bool):
        raise EntryDecodeError(f"{field} is a boolean")
    if isinstance(raw, float) and not math.isfinite(raw):
        raise EntryDecodeError(f"{field} is not finite")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise EntryDecodeError(f"{field} is not numeric: {raw!r}") from e
    if not value.is_finite():
        raise EntryDecodeError(f"{field} is not finite")
    if value < 0:
        raise EntryDecodeError(f"{field} is negative: {value}")
    if value >= MAX_AMOUNT:
        raise EntryDecodeError(f"{field} is out of range: {value}")
    return value


def _parse_count(raw: Any, *, field: str, page: int) -> int | None:
    """Read a non-negative integer from page metadata.

    Accepts ints, integral floats and decimal-digit strings. Absent or null gives None.

    Raises:
        ExternalAPIError: If the value is present but not a usable count.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, int):
        value = raw
    elif isinstance(raw, float) and raw.is_integer():
        value = int(raw)
    elif isinstance(raw, str) and raw.strip().isdecimal():
        value = int(raw.strip())
    else:
        value = None
    if value is None or value < 0:
        raise ExternalAPIError(f"External API page {page} has an invalid {field}: {raw!r}")
    return value
