"""
Connectivity Observer Module

Tracks whether the client is online and signals each online/offline
transition exactly once. The observer only updates observable state; the
sync controller decides what to do when the client comes back online.
"""

from typing import Callable, List, Optional

import requests

from config import settings
from utils.logger import get_logger

logger = get_logger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityObserver:
    """Online/offline state with a change signal."""

    def __init__(
        self,
        initial_online: Optional[bool] = None,
        health_url: Optional[str] = None,
        probe_timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self._online = settings.CONNECTIVITY_INITIAL_ONLINE if initial_online is None else initial_online
        self.health_url = health_url if health_url is not None else settings.CONNECTIVITY_HEALTH_URL
        self.probe_timeout = probe_timeout if probe_timeout is not None else settings.CONNECTIVITY_PROBE_TIMEOUT
        self.session = session or requests.Session()
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a listener called with the new state on every transition.

        Returns:
            Callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """
        Record the current connectivity state.

        Args:
            online: True when the client can reach the network.

        Returns:
            bool: True if this was a transition (listeners were signalled).
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)
        return True

    def mark_online(self) -> bool:
        return self.set_online(True)

    def mark_offline(self) -> bool:
        return self.set_online(False)

    def probe(self) -> bool:
        """
        Actively check connectivity against the health URL.

        Any HTTP answer below 500 counts as online; connection errors,
        timeouts and server errors count as offline. Without a health URL
        the current state is returned unchanged.

        Returns:
            bool: The (possibly updated) online state.
        """
        if not self.health_url:
            return self._online

        try:
            response = self.session.head(self.health_url, timeout=self.probe_timeout, allow_redirects=True)
            online = response.status_code < 500
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self.set_online(online)
        return self._online
