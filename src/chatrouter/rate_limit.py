from __future__ import annotations

from enum import Enum
from typing import Any

from .errors import EmptyReplyError, ModelTimeoutError, ProviderError

RATE_LIMIT_STATUS = 429
_RATE_LIMIT_PHRASE = "rate limit"


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    EMPTY_REPLY = "empty_reply"
    HARD = "hard"

    @property
    def transient(self) -> bool:
        return self in (FailureKind.TIMEOUT, FailureKind.RATE_LIMITED)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_rate_limited(
    status_code: Any = None,
    error_code: Any = None,
    message: Any = None,
) -> bool:
    if _is_number(status_code) and status_code == RATE_LIMIT_STATUS:
        return True
    if _is_number(error_code) and error_code == RATE_LIMIT_STATUS:
        return True
    if isinstance(error_code, str) and error_code.strip() == str(RATE_LIMIT_STATUS):
        return True
    if isinstance(message, str) and _RATE_LIMIT_PHRASE in message.lower():
        return True
    return False


def failure_fields(exc: BaseException) -> tuple[Any, Any, str]:
    """Return the ``(status_code, error_code, message)`` triple for ``exc``."""
    if isinstance(exc, ProviderError):
        return exc.status_code, exc.error_code, exc.message
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    code = getattr(exc, "code", None)
    return status, code, str(exc)


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, ModelTimeoutError):
        return FailureKind.TIMEOUT
    status, code, message = failure_fields(exc)
    if is_rate_limited(status, code, message):
        return FailureKind.RATE_LIMITED
    if isinstance(exc, EmptyReplyError):
        return FailureKind.EMPTY_REPLY
    return FailureKind.HARD


__all__ = [
    "FailureKind",
    "RATE_LIMIT_STATUS",
    "classify_failure",
    "failure_fields",
    "is_rate_limited",
]
