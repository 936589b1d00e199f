"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the collaborators of the
replay layer. These protocols enable loose coupling, dependency injection,
and easier testing.

Protocols defined:
- RemoteApi: Interface for replaying queued operations against the remote service
- ConnectivitySignal: Interface for the online/offline state the replay layer consults
"""

from typing import Protocol, Optional, Dict, Any, Callable


class RemoteApi(Protocol):
    """Protocol defining the interface for the remote API used during a drain.

    Implementations should provide methods for:
    - Replaying one queued operation payload
    - Creating a post from an offline draft
    """

    def replay(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Replay one queued operation.

        Args:
            payload: ``{"action": ..., "args": {...}}`` as stored in the queue.

        Returns:
            The decoded response body, or None when the response had none.

        Raises:
            ReplayError: If the operation was not applied remotely.
        """
        ...

    def create_post(self, post: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Create a post from an offline draft's content fields.

        Raises:
            ReplayError: If the post was not created.
        """
        ...


class ConnectivitySignal(Protocol):
    """Protocol for the online/offline state consumed by the replay layer."""

    @property
    def is_online(self) -> bool:
        ...

    def set_online(self, online: bool) -> bool:
        ...

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        ...
