"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for the key-value storage
the offline queue persists into. These protocols enable dependency
injection, making the queue testable without touching the filesystem.

Protocols defined:
- KeyValueStorage: Interface for durable, origin-scoped string storage
"""

from typing import Protocol, Optional, Callable, Any
from dataclasses import dataclass


@dataclass(frozen=True)
class StorageEvent:
    """A change to one storage key.

    ``source`` is the token passed by the writer, or None when the change
    was detected from outside the process (e.g. another process writing
    the same storage directory).
    """
    key: str
    old_value: Optional[str]
    new_value: Optional[str]
    source: Any = None


StorageListener = Callable[[StorageEvent], None]


class KeyValueStorage(Protocol):
    """Protocol defining the interface for key-value storage backends.

    Implementations should provide methods for:
    - Reading and writing string values by key
    - Removing keys
    - Notifying listeners when a key changes
    """

    def get_item(self, key: str) -> Optional[str]:
        """Read the value stored under ``key``.

        Args:
            key: The storage key.

        Returns:
            The stored string, or None if the key is missing.
        """
        ...

    def set_item(self, key: str, value: str, source: Any = None) -> None:
        """Store ``value`` under ``key``.

        Args:
            key: The storage key.
            value: Serialized value.
            source: Opaque token identifying the writer; echoed in StorageEvent.
        """
        ...

    def remove_item(self, key: str, source: Any = None) -> None:
        """Delete ``key``. Removing a missing key is not an error."""
        ...

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A callable that removes the listener.
        """
        ...
