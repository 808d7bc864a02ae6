"""Typed error hierarchy for the wager engine.

Every domain error carries an :class:`ErrorCode` and the HTTP status the
collaborator API layer should answer with, so callers never have to match
on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    RAW_STATS_MISSING = "RAW_STATS_MISSING"
    ALREADY_REVERTED = "ALREADY_REVERTED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    EXTERNAL_API_UNAVAILABLE = "EXTERNAL_API_UNAVAILABLE"
    EXTERNAL_API_TIMEOUT = "EXTERNAL_API_TIMEOUT"
    PARTIAL_SYNC_FAILURE = "PARTIAL_SYNC_FAILURE"
    CACHE_FAILURE = "CACHE_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RAW_STATS_MISSING: 404,
    ErrorCode.ALREADY_REVERTED: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.EXTERNAL_API_ERROR: 502,
    ErrorCode.EXTERNAL_API_UNAVAILABLE: 503,
    ErrorCode.EXTERNAL_API_TIMEOUT: 504,
    ErrorCode.PARTIAL_SYNC_FAILURE: 500,
    ErrorCode.CACHE_FAILURE: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


class WagerEngineError(Exception):
    """Base exception for all wager engine errors."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]


class NotFoundError(WagerEngineError):
    """Raised when a user or adjustment does not exist."""

    code = ErrorCode.NOT_FOUND


class RawStatsMissingError(NotFoundError):
    """Raised when a user has never been synced from the external API."""

    code = ErrorCode.RAW_STATS_MISSING


class AlreadyRevertedError(WagerEngineError):
    code = ErrorCode.ALREADY_REVERTED


class ValidationError(WagerEngineError):
    code = ErrorCode.VALIDATION_ERROR


class ExternalAPIError(WagerEngineError):
    """Raised when the external API answers with an unusable response."""

    code = ErrorCode.EXTERNAL_API_ERROR


class ExternalAPIUnavailableError(ExternalAPIError):
    """Raised when the circuit is open or the API is down (5xx / transport)."""

    code = ErrorCode.EXTERNAL_API_UNAVAILABLE

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ExternalAPITimeoutError(ExternalAPIError):
    code = ErrorCode.EXTERNAL_API_TIMEOUT


class PartialSyncFailure(WagerEngineError):
    """Raised on demand when a completed sync run counted per-user errors."""

    code = ErrorCode.PARTIAL_SYNC_FAILURE

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class CacheFailure(WagerEngineError):
    """Cache read/write/serialization problem. Never surfaced to callers."""

    code = ErrorCode.CACHE_FAILURE


def error_to_dict(error: Exception) -> dict[str, Any]:
    """Render an error for the collaborator HTTP layer.

    Errors outside the hierarchy become ``INTERNAL_ERROR`` with a generic
    message; their details stay in the logs.
    """
    if not isinstance(error, WagerEngineError):
        return {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": f"Unexpected {type(error).__name__}",
            "status": HTTP_STATUS_BY_CODE[ErrorCode.INTERNAL_ERROR],
        }
    payload: dict[str, Any] = {
        "code": error.code.value,
        "message": error.message,
        "status": error.http_status,
    }
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        payload["retry_after"] = retry_after
    return payload
