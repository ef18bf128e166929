"""
Error taxonomy and failure classification for remote query execution.

Classification is deterministic and checked in a fixed order so that the
retry decision for a given failure never depends on timing.
"""

import re
from enum import Enum


class ErrorKind(str, Enum):
    """Classified failure kinds surfaced on query outcomes."""

    CREATION_ERROR = "creation_error"
    TRANSIENT = "transient"
    FATAL = "fatal"
    TIMEOUT = "timeout"
    AUTH_EXPIRED = "auth_expired"


RETRYABLE_STATUSES = frozenset({408, 429, 503})
AUTH_STATUSES = frozenset({401, 403})
TRANSIENT_MESSAGE_MARKERS = ("timeout", "temporarily unavailable", "capacity limit")
AUTH_MESSAGE_MARKERS = ("token", "authentication", "authorization")


class GatewayError(Exception):
    """Base class for all gateway errors."""


class SessionCreationError(GatewayError):
    """No usable credential could be obtained for a session."""

    def __init__(self, message: str, pool_key: str | None = None):
        super().__init__(message)
        self.pool_key = pool_key


class RemoteQueryError(GatewayError):
    """
    Failure reported by the remote query service.

    ``status`` is ``None`` when no structured response was received at all
    (connection reset, DNS failure and the like).
    """

    def __init__(
        self, message: str, status: int | None = None, code: str | None = None
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class QueryTimeoutError(RemoteQueryError):
    """A single attempt exceeded its deadline."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Query timeout after {int(timeout_seconds * 1000)}ms")
        self.timeout_seconds = timeout_seconds


class MalformedResultError(GatewayError):
    """The remote service answered with an unexpected result shape."""


class GatewayQueryError(GatewayError):
    """Terminal failure of a resilient call, carrying its classification."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        attempts: int = 0,
        session_invalidated: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.attempts = attempts
        self.session_invalidated = session_invalidated


def _status_of(error: BaseException) -> int | None:
    return getattr(error, "status", None)


def classify_error(error: BaseException) -> ErrorKind:
    """Map a failure onto the retry taxonomy."""
    if isinstance(error, SessionCreationError):
        return ErrorKind.CREATION_ERROR
    if isinstance(error, QueryTimeoutError | TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, MalformedResultError | GatewayQueryError):
        return ErrorKind.FATAL

    status = _status_of(error)
    if status is None:
        return ErrorKind.TRANSIENT
    if status >= 500 or status in RETRYABLE_STATUSES:
        return ErrorKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return ErrorKind.TRANSIENT

    return ErrorKind.FATAL


def is_retryable(kind: ErrorKind) -> bool:
    return kind in (ErrorKind.TRANSIENT, ErrorKind.TIMEOUT)


def requires_session_invalidation(error: BaseException) -> bool:
    """True for auth failures, which poison the cached session."""
    if _status_of(error) in AUTH_STATUSES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in AUTH_MESSAGE_MARKERS)


def sanitize_error_message(error_message: str) -> str:
    """
    Mask credentials that remote services sometimes echo back in errors.

    Args:
        error_message: The raw error message

    Returns:
        str: Sanitized error message
    """
    sensitive_patterns = [
        (r"bearer\s+[A-Za-z0-9\-_\.=]+", "Bearer ***"),
        (r'token[=:]\s*[\'"][^\'";]+[\'"]', "token=***"),
        (r"access_token[=:]\s*[A-Za-z0-9\-_\.]+", "access_token=***"),
        (r'password[=:]\s*[\'"]?[^\'";\s]+[\'"]?', "password=***"),
    ]

    sanitized_message = error_message
    for pattern, replacement in sensitive_patterns:
        sanitized_message = re.sub(
            pattern, replacement, sanitized_message, flags=re.IGNORECASE
        )

    return sanitized_message
