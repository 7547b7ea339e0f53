"""Error taxonomy for the synchronization engine.

Every error carries a machine-readable ``kind`` so collaborators can react
to the failure class without parsing messages.
"""

from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Machine-readable error codes reported on the error channel."""
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    NETWORK = "NETWORK"
    PARSE_ERROR = "PARSE_ERROR"
    LOCAL_STORAGE = "LOCAL_STORAGE"
    VALIDATION = "VALIDATION"


class SyncError(Exception):
    """Base class for synchronization errors"""
    kind: ErrorKind = ErrorKind.NETWORK


class LocalStorageError(SyncError):
    """Serialization or capacity failure in the local store"""
    kind = ErrorKind.LOCAL_STORAGE


class NetworkError(SyncError):
    """Transport-level failure talking to the remote service"""
    kind = ErrorKind.NETWORK


class RemoteError(SyncError):
    """Unexpected HTTP status from the remote service"""
    kind = ErrorKind.NETWORK

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UnauthorizedError(RemoteError):
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(RemoteError):
    kind = ErrorKind.FORBIDDEN


class RateLimitedError(ForbiddenError):
    """Quota exhausted; ``reset_at`` tells when the quota refills."""
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        reset_at: Optional[datetime] = None,
        remaining: int = 0,
        status: Optional[int] = 403,
    ):
        super().__init__(message, status)
        self.reset_at = reset_at
        self.remaining = remaining


class NotFoundError(RemoteError):
    kind = ErrorKind.NOT_FOUND


class ParseError(SyncError):
    """Remote document content is not valid JSON of the expected shape"""
    kind = ErrorKind.PARSE_ERROR


class ValidationError(SyncError):
    """A collection passed in by a caller is malformed"""
    kind = ErrorKind.VALIDATION
