"""
Sync Controller Module

Binds the offline queue to connectivity changes: when the client comes
back online the queue is drained, and storage changes from other contexts
refresh the queue's snapshot. Also exposes the read model UI code renders
(online flag, drafts, queued operations and the status summary).
"""

from typing import Any, Callable, Dict, List, Optional

from services.connectivity import ConnectivityObserver
from services.offline_queue import OfflineQueue
from services.replay_service import DrainResult, ReplayService
from utils.exceptions import OfflineQueueError
from utils.logger import get_logger

logger = get_logger(__name__)


class OfflineSyncController:
    """Consuming layer of the offline queue: start -> use -> dispose."""

    def __init__(self, queue: OfflineQueue, connectivity: ConnectivityObserver, replay: ReplayService):
        self.queue = queue
        self.connectivity = connectivity
        self.replay = replay
        self.last_drain: Optional[DrainResult] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False

    def start(self) -> None:
        """Attach to connectivity and storage signals."""
        if self._started:
            return
        self._unsubscribers.append(self.connectivity.subscribe(self._on_connectivity_change))
        self.queue.attach_storage_events()
        self._started = True
        logger.debug("Offline sync controller started")

    def dispose(self) -> None:
        """Detach from every signal and release the queue."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.queue.dispose()
        self._started = False

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Back online, draining offline queue")
            self.drain()

    def drain(self) -> Optional[DrainResult]:
        """
        Drain the queue, logging instead of raising queue-level failures.

        Returns:
            Optional[DrainResult]: The result, or None if the drain failed.
        """
        try:
            self.last_drain = self.replay.drain()
        except OfflineQueueError as e:
            logger.error(f"Offline queue drain failed: {e}", exc_info=True)
            return None
        return self.last_drain

    def state(self) -> Dict[str, Any]:
        """Snapshot of everything the offline indicator renders."""
        return {
            "isOnline": self.connectivity.is_online,
            "offlinePosts": self.queue.get_offline_posts(),
            "queueItems": self.queue.get_queue_items(),
            "status": self.queue.get_status().to_dict(),
        }
