"""
Error taxonomy for the data store.

Backends translate their own failures into these kinds so the store
can decide what to recover from without knowing about boto3:
- NotFound and Conflict are expected outcomes for some operations
- TransientError is the only kind that gets retried
- everything else is fatal and reaches the caller unchanged
"""

from typing import Any, Optional


class DataStoreError(Exception):
    """Base exception for all data store errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotConfigured(DataStoreError):
    """Raised when a required setting (bucket or credentials) is missing."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field_name})
        self.field_name = field_name


class NotFound(DataStoreError):
    """The object or bucket does not exist."""
    pass


class Conflict(DataStoreError):
    """The backend refused the operation because of a conflicting state."""
    pass


class TransientError(DataStoreError):
    """
    Connection-level failure (dropped socket, timeout, unreachable endpoint).

    The original exception is kept on `cause` for debugging.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class InvalidRegion(DataStoreError):
    """Raised when the configured region has no known service host."""
    pass


class UnknownDataStore(DataStoreError, KeyError):
    """No data store is registered under the requested name."""

    def __str__(self) -> str:
        return self.message
