"""
Custom Exception Classes for the Offline Queue

This module defines custom exceptions for better error handling and
categorization of failures across the offline queue, its storage and
the replay layer.
"""

from typing import Optional


class OfflineQueueError(Exception):
    """Base exception for all offline queue errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(OfflineQueueError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(OfflineQueueError):
    """Base exception for persisted storage errors."""
    pass


class StorageReadError(StorageError):
    """Raised when the underlying storage cannot be read (storage disabled, I/O failure)."""
    pass


class StorageWriteError(StorageError):
    """Raised when a collection cannot be written to storage."""
    pass


class StorageQuotaExceededError(StorageWriteError):
    """Raised when a value is larger than the storage quota allows."""
    pass


class ConcurrentModificationError(StorageError):
    """Raised when a collection was changed by another context since it was loaded."""

    def __init__(self, key: str, expected_version: int, actual_version: int):
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Collection '{key}' changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class CorruptedDataError(OfflineQueueError):
    """Describes a persisted value that could not be parsed.

    Reported to the anomaly callback of the persistence adapter; never raised
    to queue callers.
    """
    pass


# =============================================================================
# Queue State Errors
# =============================================================================

class InvalidStatusTransitionError(OfflineQueueError):
    """Raised when an offline post is moved to a status it cannot reach."""

    def __init__(self, post_id: str, current: str, requested: str):
        self.post_id = post_id
        self.current = current
        self.requested = requested
        super().__init__(f"Offline post {post_id} cannot move from '{current}' to '{requested}'")


# =============================================================================
# Replay Errors
# =============================================================================

class ReplayError(OfflineQueueError):
    """Base exception for failures while replaying an operation against the remote API."""
    pass


class ReplayHTTPError(ReplayError):
    """Raised when the remote API answers with a non-success status code."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteUnavailableError(ReplayError):
    """Raised when the remote API cannot be reached at all."""
    pass


class UnknownActionError(ReplayError):
    """Raised when a queued payload names an action the client cannot replay."""
    pass
