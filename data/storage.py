"""
Storage Module for the Offline Queue

This module provides the durable key-value stores the offline queue
persists its collections into:

- InMemoryStorage: dict-backed store. Several queue instances sharing one
  InMemoryStorage behave like several browser tabs sharing localStorage.
- FileStorage: one text file per key inside a directory. This is the
  origin-scoped durable storage used by the application. Changes made by
  other processes are picked up with poll_changes().
"""

import os
import re
import tempfile
from typing import Any, Callable, Dict, List, Optional, Tuple

from data.protocols import StorageEvent, StorageListener
from utils.exceptions import StorageQuotaExceededError, StorageReadError, StorageWriteError
from utils.logger import get_logger

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')


class _ListenerMixin:
    """Listener registry shared by the storage backends."""

    def _init_listeners(self) -> None:
        self._listeners: List[StorageListener] = []

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """
        Register a change listener.

        Args:
            listener: Called with a StorageEvent for every change.

        Returns:
            Callable that unregisters the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # A failing listener must not break the write that triggered it
                logger.error(f"Storage listener failed for key '{event.key}': {e}", exc_info=True)

    def _check_quota(self, key: str, value: str) -> None:
        if self.max_bytes is not None and len(value.encode('utf-8')) > self.max_bytes:
            raise StorageQuotaExceededError(
                f"Value for '{key}' is {len(value.encode('utf-8'))} bytes, quota is {self.max_bytes}"
            )


class InMemoryStorage(_ListenerMixin):
    """Dict-backed key-value storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, max_bytes: Optional[int] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self.max_bytes = max_bytes
        self._init_listeners()

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str, source: Any = None) -> None:
        self._check_quota(key, value)
        old_value = self._data.get(key)
        self._data[key] = value
        self._emit(StorageEvent(key, old_value, value, source))

    def remove_item(self, key: str, source: Any = None) -> None:
        if key not in self._data:
            return
        old_value = self._data.pop(key)
        self._emit(StorageEvent(key, old_value, None, source))

    def keys(self) -> List[str]:
        return list(self._data.keys())


class FileStorage(_ListenerMixin):
    """
    Directory-backed key-value storage.

    Each key is stored in ``<directory>/<key>.json``. Writes go to a
    temporary file that is then moved into place, so a reader never sees
    a half-written value.
    """

    def __init__(self, directory: str, max_bytes: Optional[int] = None):
        """
        Initialize the file storage.

        Args:
            directory: Directory holding one file per key (created on first write).
            max_bytes: Maximum encoded size of a single value (optional).
        """
        self.directory = str(directory)
        self.max_bytes = max_bytes
        self._fingerprints: Dict[str, Optional[Tuple[int, int]]] = {}
        self._init_listeners()

    def _path(self, key: str) -> str:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return os.path.join(self.directory, f"{key}.json")

    def _fingerprint(self, key: str) -> Optional[Tuple[int, int]]:
        try:
            st = os.stat(self._path(key))
        except FileNotFoundError:
            return None
        return st.st_mtime_ns, st.st_size

    def get_item(self, key: str) -> Optional[str]:
        """
        Read the value stored under ``key``.

        Returns:
            Optional[str]: The stored text, or None if the key does not exist.

        Raises:
            StorageReadError: If the file exists but cannot be read.
        """
        path = self._path(key)
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                value = f.read()
        except FileNotFoundError:
            self._fingerprints[key] = None
            return None
        except OSError as e:
            logger.error(f"Failed to read storage key '{key}' from {path}: {e}")
            raise StorageReadError(f"Cannot read '{key}': {e}") from e

        self._fingerprints[key] = self._fingerprint(key)
        return value

    def set_item(self, key: str, value: str, source: Any = None) -> None:
        """
        Store ``value`` under ``key``.

        Raises:
            StorageQuotaExceededError: If the value exceeds max_bytes.
            StorageWriteError: If the value cannot be written.
        """
        self._check_quota(key, value)
        path = self._path(key)
        old_value = self._read_quietly(path)

        tmp_path = None
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            logger.error(f"Failed to write storage key '{key}' to {path}: {e}")
            raise StorageWriteError(f"Cannot write '{key}': {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

        self._fingerprints[key] = self._fingerprint(key)
        self._emit(StorageEvent(key, old_value, value, source))

    def remove_item(self, key: str, source: Any = None) -> None:
        path = self._path(key)
        old_value = self._read_quietly(path)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to remove storage key '{key}': {e}")
            raise StorageWriteError(f"Cannot remove '{key}': {e}") from e

        self._fingerprints[key] = None
        self._emit(StorageEvent(key, old_value, None, source))

    def poll_changes(self) -> List[StorageEvent]:
        """
        Detect keys changed by other processes since this instance last saw them.

        Only keys this instance has read or written before are tracked.
        Each detected change is emitted to listeners with ``source=None``.

        Returns:
            List[StorageEvent]: The emitted events.
        """
        events = []
        for key, known in list(self._fingerprints.items()):
            current = self._fingerprint(key)
            if current == known:
                continue
            self._fingerprints[key] = current
            new_value = self._read_quietly(self._path(key))
            events.append(StorageEvent(key, None, new_value, None))

        for event in events:
            logger.debug(f"External change detected for storage key '{event.key}'")
            self._emit(event)
        return events

    @staticmethod
    def _read_quietly(path: str) -> Optional[str]:
        # Old/new values in events are informational only
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                return f.read()
        except OSError:
            return None
