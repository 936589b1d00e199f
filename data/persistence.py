"""
Persistence Adapter for the Offline Queue

This module handles loading and saving the queue's named collections
(offline_queue, offline_posts, offline_dead_letter) as JSON envelopes in a
KeyValueStorage backend.

Stored layout:
    {"schemaVersion": 1, "version": 7, "items": [...]}

``version`` is an optimistic-concurrency token that grows on every save.
A save that names the version it loaded is rejected when another context
has saved the collection in the meantime.

Missing keys load as empty collections. Unparseable or malformed values
also load as empty collections; the anomaly is logged and passed to the
optional ``on_anomaly`` callback instead of being raised.
"""

import copy
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config import settings
from data.models import STATUS_PENDING
from data.protocols import KeyValueStorage
from utils.exceptions import (
    ConcurrentModificationError, CorruptedDataError, StorageError, StorageWriteError
)
from utils.logger import get_logger

logger = get_logger(__name__)

AnomalyCallback = Callable[[str, Exception], None]


@dataclass
class LoadedCollection:
    """A collection read from storage together with its version token."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    version: int = 0


def _raw_version(parsed: Any) -> int:
    """Version token of a decoded value, 0 when it carries none."""
    if isinstance(parsed, dict) and isinstance(parsed.get("version"), int):
        return parsed["version"]
    return 0


def _migrate_v0_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a record from the unversioned layout to schema 1."""
    record = dict(record)

    # Queue items used to carry {type, data, max_retries}
    if "payload" not in record and ("data" in record or "type" in record) and "timestamp" in record:
        record["payload"] = {
            "action": record.pop("type", None),
            "args": record.pop("data", None) or {},
        }
        record.pop("max_retries", None)

    # Drafts were saved with status "draft" before the sync states existed
    if record.get("status") == "draft":
        record["status"] = STATUS_PENDING

    return record


# Migration steps keyed by the schema version they upgrade from
MIGRATIONS = {
    0: lambda items: [_migrate_v0_record(r) for r in items],
}


class QueuePersistence:
    """Load/save adapter between the offline queue and a KeyValueStorage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        source: Optional[str] = None,
        schema_version: Optional[int] = None,
        on_anomaly: Optional[AnomalyCallback] = None
    ):
        """
        Initialize the persistence adapter.

        Args:
            storage: Backend holding the serialized collections.
            source: Token identifying this browsing context in storage events.
            schema_version: Envelope schema to write, defaults to settings.OFFLINE_SCHEMA_VERSION.
            on_anomaly: Called with (key, error) when persisted data had to be discarded.
        """
        self.storage = storage
        self.source = source or f"context_{uuid.uuid4().hex[:12]}"
        self.schema_version = schema_version if schema_version is not None else settings.OFFLINE_SCHEMA_VERSION
        self.on_anomaly = on_anomaly
        self._read_only_keys = set()

    def report_anomaly(self, key: str, error: Exception) -> None:
        """Log discarded persisted data and forward it to the anomaly callback."""
        logger.warning(f"Discarding persisted data for '{key}': {error}")
        if self.on_anomaly is not None:
            try:
                self.on_anomaly(key, error)
            except Exception as e:
                logger.error(f"Anomaly callback failed for '{key}': {e}", exc_info=True)

    def load(self, key: str) -> LoadedCollection:
        """
        Load a collection.

        Args:
            key: Storage key of the collection.

        Returns:
            LoadedCollection: Items (plain dicts, insertion order) and version token.

        Raises:
            StorageReadError: If the storage backend itself cannot be read.
        """
        raw = self.storage.get_item(key)
        if raw is None:
            return LoadedCollection()

        try:
            parsed = json.loads(raw)
        except ValueError as e:
            self.report_anomaly(key, CorruptedDataError(f"Unparseable JSON: {e}"))
            return LoadedCollection()

        if isinstance(parsed, list):
            # Legacy layout: a bare list without schema or version
            schema, version, items = 0, 0, parsed
        elif isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
            schema = parsed.get("schemaVersion", 0)
            version = parsed.get("version", 0)
            items = parsed["items"]
            if not isinstance(schema, int) or not isinstance(version, int):
                self.report_anomaly(key, CorruptedDataError("Envelope has non-integer schemaVersion/version"))
                return LoadedCollection(version=_raw_version(parsed))
        else:
            # Keep the stored token so the next save can replace the bad value
            self.report_anomaly(key, CorruptedDataError(f"Unexpected value shape: {type(parsed).__name__}"))
            return LoadedCollection(version=_raw_version(parsed))

        if schema > self.schema_version:
            # Written by a newer client; keep it untouched rather than overwrite it
            self._read_only_keys.add(key)
            self.report_anomaly(key, CorruptedDataError(
                f"schemaVersion {schema} is newer than supported version {self.schema_version}"
            ))
            return LoadedCollection(version=version)
        self._read_only_keys.discard(key)

        valid_items = [item for item in items if isinstance(item, dict) and "id" in item]
        if len(valid_items) != len(items):
            self.report_anomaly(key, CorruptedDataError(f"Dropped {len(items) - len(valid_items)} malformed record(s)"))

        while schema < self.schema_version:
            step = MIGRATIONS.get(schema)
            if step is not None:
                valid_items = step(valid_items)
            logger.info(f"Migrated '{key}' from schema {schema} to {schema + 1}")
            schema += 1

        return LoadedCollection(items=copy.deepcopy(valid_items), version=version)

    def stored_version(self, key: str) -> int:
        """Return the version token currently in storage (0 if missing or unreadable as JSON)."""
        raw = self.storage.get_item(key)
        if raw is None:
            return 0
        try:
            parsed = json.loads(raw)
        except ValueError:
            return 0
        return _raw_version(parsed)

    def save(self, key: str, items: List[Dict[str, Any]], expected_version: Optional[int] = None) -> int:
        """
        Save a collection.

        Args:
            key: Storage key of the collection.
            items: Plain-dict records in insertion order.
            expected_version: Version the caller loaded. When given and the stored
                version differs, the save is rejected. None means last writer wins.

        Returns:
            int: The new version token.

        Raises:
            ConcurrentModificationError: If the stored version moved since load.
            StorageWriteError: If the value cannot be written.
        """
        if key in self._read_only_keys:
            raise StorageWriteError(f"'{key}' holds data from a newer schema and is read-only")

        current = self.stored_version(key)
        if expected_version is not None and current != expected_version:
            raise ConcurrentModificationError(key, expected_version, current)

        new_version = current + 1
        envelope = {
            "schemaVersion": self.schema_version,
            "version": new_version,
            "items": items,
        }

        try:
            value = json.dumps(envelope, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"Collection '{key}' is not serializable: {e}") from e

        try:
            self.storage.set_item(key, value, source=self.source)
        except StorageError:
            raise
        except OSError as e:
            raise StorageWriteError(f"Cannot write '{key}': {e}") from e

        logger.debug(f"Saved '{key}' ({len(items)} item(s), version {new_version})")
        return new_version
