"""
Custom exceptions for tea sync.

Remote store and cache implementations raise these exceptions so the
coordinator can decide between degrading, surfacing or ignoring a failure.
"""

from __future__ import annotations

from enum import Enum


class TeaSyncError(Exception):
    """Base exception for all tea sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TeaSyncError):
    """Raised when a record fails local validation.

    Validation errors are raised before any I/O and never reach the remote store.
    """

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class RemoteErrorKind(Enum):
    """Classification of a remote store failure.

    TRANSIENT: connectivity, timeouts, throttling, server errors (retryable)
    REJECTED: validation, authorization or constraint failures (not retryable)
    """

    TRANSIENT = "transient"
    REJECTED = "rejected"


class RemoteError(TeaSyncError):
    """Raised when a remote store call fails."""

    def __init__(
        self,
        operation: str,
        kind: RemoteErrorKind,
        status: int | None = None,
        reason: str | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"operation": operation, "kind": kind.value}
        if status is not None:
            details["status"] = status
        if reason:
            details["reason"] = reason
        if cause:
            details["cause"] = str(cause)
        message = f"Remote {operation} failed ({kind.value})"
        if status is not None:
            message += f": HTTP {status}"
        if reason:
            message += f" {reason}"
        super().__init__(message, details)
        self.operation = operation
        self.kind = kind
        self.status = status
        self.reason = reason
        self.cause = cause

    @property
    def transient(self) -> bool:
        return self.kind is RemoteErrorKind.TRANSIENT

    @property
    def rejected(self) -> bool:
        return self.kind is RemoteErrorKind.REJECTED

    @classmethod
    def transient_error(
        cls, operation: str, status: int | None = None, reason: str | None = None,
        cause: Exception | None = None,
    ) -> RemoteError:
        return cls(operation, RemoteErrorKind.TRANSIENT, status, reason, cause)

    @classmethod
    def rejected_error(
        cls, operation: str, status: int | None = None, reason: str | None = None,
        cause: Exception | None = None,
    ) -> RemoteError:
        return cls(operation, RemoteErrorKind.REJECTED, status, reason, cause)


class CacheError(TeaSyncError):
    """Raised when the local cache cannot be read or written.

    The cache is best-effort: callers log this error and carry on.
    """

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Cache error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class SyncStateError(TeaSyncError):
    """Raised when the coordinator is used outside its session lifecycle."""
