"""
Offline Queue Module

This module holds the offline mutation queue: a persisted buffer of
operations (post drafts, likes, comments, retweets, follows) created while
the client is offline or while a write failed, replayed later by the
replay service.

The queue keeps an in-memory snapshot of three collections:
- offline posts (drafts with a pending/syncing/failed/synced status)
- queue items (generic remote operations, FIFO)
- dead-letter items (queue items that exhausted their retry policy)

Every mutation is a full read-modify-write of one collection, saved with
the optimistic version token of the snapshot. Callers only ever receive
copies of the records.
"""

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import settings
from data.models import (
    ATTENTION_STATUSES, POST_STATUSES, POST_SYSTEM_FIELDS, POST_TYPES, QUEUE_SYSTEM_FIELDS,
    STATUS_FAILED, STATUS_PENDING, OfflinePost, OfflineQueueItem, QueueStatus, can_transition
)
from data.persistence import QueuePersistence
from data.protocols import StorageEvent
from utils.exceptions import (
    ConcurrentModificationError, CorruptedDataError, InvalidStatusTransitionError, StorageError
)
from utils.helpers import generate_id, ms_to_iso, now_ms
from utils.logger import get_logger

logger = get_logger(__name__)

StatusListener = Callable[[QueueStatus], None]


class OfflineQueue:
    """Persisted queue of offline posts and pending remote operations."""

    def __init__(
        self,
        persistence: QueuePersistence,
        clock: Optional[Callable[[], int]] = None,
        id_factory: Optional[Callable[[int], str]] = None,
        optimistic_concurrency: Optional[bool] = None,
        conflict_retries: Optional[int] = None
    ):
        """
        Initialize the queue and load its collections from storage.

        Args:
            persistence: Adapter used to load and save the collections.
            clock: Returns the current time in epoch milliseconds.
            id_factory: Builds a record id from a timestamp.
            optimistic_concurrency: Reject stale saves (defaults to settings).
            conflict_retries: Reload-and-reapply attempts after a rejected save.
        """
        self.persistence = persistence
        self.clock = clock or now_ms
        self.id_factory = id_factory or generate_id
        self.optimistic_concurrency = (
            settings.OFFLINE_OPTIMISTIC_CONCURRENCY if optimistic_concurrency is None else optimistic_concurrency
        )
        self.conflict_retries = (
            settings.OFFLINE_SAVE_CONFLICT_RETRIES if conflict_retries is None else conflict_retries
        )

        self.queue_key = settings.OFFLINE_QUEUE_KEY
        self.posts_key = settings.OFFLINE_POSTS_KEY
        self.dead_letter_key = settings.OFFLINE_DEAD_LETTER_KEY

        self._factories = {
            self.queue_key: OfflineQueueItem.from_dict,
            self.posts_key: OfflinePost.from_dict,
            self.dead_letter_key: OfflineQueueItem.from_dict,
        }
        self._items: Dict[str, List[Any]] = {key: [] for key in self._factories}
        self._versions: Dict[str, int] = {key: 0 for key in self._factories}
        self._listeners: List[StatusListener] = []
        self._detach_storage: Optional[Callable[[], None]] = None

        for key in self._factories:
            self._reload(key)

    # =========================================================================
    # Snapshot management
    # =========================================================================

    def _reload(self, key: str) -> None:
        """Replace the snapshot of one collection with what storage holds."""
        loaded = self.persistence.load(key)
        factory = self._factories[key]

        records = []
        seen = set()
        for raw in loaded.items:
            try:
                record = factory(raw)
            except (KeyError, TypeError, ValueError) as e:
                self.persistence.report_anomaly(key, CorruptedDataError(f"Skipping invalid record: {e}"))
                continue
            if record.id in seen:
                self.persistence.report_anomaly(key, CorruptedDataError(f"Skipping duplicate id {record.id}"))
                continue
            seen.add(record.id)
            records.append(record)

        self._items[key] = records
        self._versions[key] = loaded.version

    def refresh(self) -> QueueStatus:
        """
        Reload every collection from storage and notify observers.

        Returns:
            QueueStatus: Status after the refresh.
        """
        for key in self._factories:
            self._reload(key)
        self._notify()
        return self.get_status()

    def handle_storage_event(self, event: StorageEvent) -> bool:
        """
        React to a storage change made by another context.

        Args:
            event: The storage change.

        Returns:
            bool: True if the snapshot was refreshed.
        """
        if event.key not in self._factories or event.source == self.persistence.source:
            return False

        try:
            self._reload(event.key)
        except StorageError as e:
            logger.error(f"Could not refresh '{event.key}' after external change: {e}")
            return False

        logger.debug(f"Refreshed '{event.key}' after external change")
        self._notify()
        return True

    def attach_storage_events(self) -> None:
        """Start listening to storage changes from other contexts."""
        if self._detach_storage is None:
            self._detach_storage = self.persistence.storage.subscribe(self.handle_storage_event)

    def dispose(self) -> None:
        """Stop listening to storage and drop all observers."""
        if self._detach_storage is not None:
            self._detach_storage()
            self._detach_storage = None
        self._listeners.clear()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register an observer called with the new QueueStatus after each change.

        Returns:
            Callable that unregisters the observer.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        status = self.get_status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Queue observer failed: {e}", exc_info=True)

    def _mutate(self, key: str, mutator: Callable[[List[Any]], Tuple[Optional[List[Any]], Any]]) -> Any:
        """
        Apply ``mutator`` to a copy of one collection and save the result.

        The mutator returns ``(new_items, result)``; ``new_items`` of None means
        nothing changed and storage is left alone. On a version conflict the
        collection is reloaded and the mutator applied again.

        Raises:
            ConcurrentModificationError: If the conflict persists after all retries.
            StorageError: If the collection cannot be saved. The snapshot is unchanged.
        """
        conflicts = 0
        while True:
            new_items, result = mutator(copy.deepcopy(self._items[key]))
            if new_items is None:
                return result

            expected = self._versions[key] if self.optimistic_concurrency else None
            try:
                version = self.persistence.save(key, [r.to_dict() for r in new_items], expected)
            except ConcurrentModificationError:
                conflicts += 1
                if conflicts > self.conflict_retries:
                    logger.error(f"Giving up on '{key}' after {conflicts} concurrent modification(s)")
                    raise
                logger.info(f"'{key}' changed in another context, reloading and retrying")
                self._reload(key)
                continue
            except StorageError as e:
                logger.error(f"Failed to persist '{key}': {e}")
                raise

            self._items[key] = new_items
            self._versions[key] = version
            self._notify()
            return result

    def _new_id(self, timestamp: int, existing: List[Any]) -> str:
        taken = {r.id for r in existing}
        record_id = self.id_factory(timestamp)
        while record_id in taken:
            record_id = generate_id(timestamp)
        return record_id

    @staticmethod
    def _find(items: List[Any], record_id: str) -> Optional[int]:
        for index, record in enumerate(items):
            if record.id == record_id:
                return index
        return None

    # =========================================================================
    # Offline posts
    # =========================================================================

    def add_offline_post(self, post: Dict[str, Any]) -> str:
        """
        Save a post draft that could not reach the remote service.

        Args:
            post: Post fields (content, author_id, type, image_urls). System fields
                  (id, created_at, status, retry_count) are assigned here.

        Returns:
            str: The generated post id.

        Raises:
            ValueError: If the post type is unknown.
            StorageError: If the draft cannot be persisted.
        """
        fields = {k: v for k, v in post.items() if k not in POST_SYSTEM_FIELDS}
        post_type = fields.get("type", "text")
        if post_type not in POST_TYPES:
            raise ValueError(f"Unknown post type: {post_type!r}")

        now = self.clock()

        def mutator(posts):
            offline_post = OfflinePost(
                id=self._new_id(now, posts),
                content=fields.get("content", ""),
                author_id=fields.get("author_id", ""),
                created_at=ms_to_iso(now),
                status=STATUS_PENDING,
                retry_count=0,
                type=post_type,
                image_urls=list(fields.get("image_urls") or []),
            )
            posts.append(offline_post)
            return posts, offline_post.id

        post_id = self._mutate(self.posts_key, mutator)
        logger.info(f"Saved offline post {post_id}")
        return post_id

    def update_post_status(self, post_id: str, status: str) -> bool:
        """
        Move an offline post to a new status.

        Entering ``failed`` counts a failed delivery attempt.

        Args:
            post_id: Id returned by add_offline_post.
            status: One of pending, syncing, failed, synced.

        Returns:
            bool: False if the post is unknown (no-op), True otherwise.

        Raises:
            ValueError: If the status is unknown.
            InvalidStatusTransitionError: If the post cannot move to ``status``.
        """
        if status not in POST_STATUSES:
            raise ValueError(f"Unknown offline post status: {status!r}")

        def mutator(posts):
            index = self._find(posts, post_id)
            if index is None:
                return None, False
            post = posts[index]
            if not can_transition(post.status, status):
                raise InvalidStatusTransitionError(post_id, post.status, status)
            post.status = status
            if status == STATUS_FAILED:
                post.retry_count += 1
                post.last_retry = ms_to_iso(self.clock())
            return posts, True

        updated = self._mutate(self.posts_key, mutator)
        if updated:
            logger.debug(f"Offline post {post_id} is now {status}")
        else:
            logger.debug(f"Offline post {post_id} not found, status update ignored")
        return updated

    def remove_offline_post(self, post_id: str) -> bool:
        """Delete an offline post. Removing an unknown id is a no-op returning False."""
        def mutator(posts):
            index = self._find(posts, post_id)
            if index is None:
                return None, False
            del posts[index]
            return posts, True

        return self._mutate(self.posts_key, mutator)

    def get_offline_posts(self) -> List[OfflinePost]:
        """Copies of all offline posts in insertion order."""
        return copy.deepcopy(self._items[self.posts_key])

    def get_post(self, post_id: str) -> Optional[OfflinePost]:
        index = self._find(self._items[self.posts_key], post_id)
        if index is None:
            return None
        return copy.deepcopy(self._items[self.posts_key][index])

    # =========================================================================
    # Queue items
    # =========================================================================

    def add_to_queue(self, item: Dict[str, Any]) -> str:
        """
        Queue a remote operation for later replay.

        Args:
            item: Either ``{"payload": {...}}``, a payload with an ``action`` key,
                  or the older ``{"type": ..., "data": {...}}`` form.

        Returns:
            str: The generated item id.

        Raises:
            ValueError: If no payload can be derived from ``item`` or its
                arguments are not a mapping.
            StorageError: If the item cannot be persisted.
        """
        fields = {k: v for k, v in item.items() if k not in QUEUE_SYSTEM_FIELDS}
        if isinstance(fields.get("payload"), dict):
            payload = copy.deepcopy(fields["payload"])
        elif "action" in fields:
            payload = {"action": fields["action"], "args": copy.deepcopy(fields.get("args") or {})}
        elif "type" in fields:
            payload = {"action": fields["type"], "args": copy.deepcopy(fields.get("data") or {})}
        else:
            raise ValueError("Queue item needs a payload, an action or a type")

        args = payload.get("args")
        if args is not None and not isinstance(args, dict):
            raise ValueError(f"Queue item arguments must be a mapping, got {type(args).__name__}")

        now = self.clock()

        def mutator(items):
            # Timestamps never go backwards within the queue
            timestamp = max([now] + [i.timestamp for i in items[-1:]])
            queue_item = OfflineQueueItem(
                id=self._new_id(timestamp, items),
                timestamp=timestamp,
                payload=payload,
                retry_count=0,
            )
            items.append(queue_item)
            return items, queue_item.id

        item_id = self._mutate(self.queue_key, mutator)
        logger.info(f"Queued '{payload.get('action')}' operation {item_id}")
        return item_id

    def get_queue_items(self) -> List[OfflineQueueItem]:
        """Copies of all queue items in insertion (replay) order."""
        return copy.deepcopy(self._items[self.queue_key])

    def get_queue_item(self, item_id: str) -> Optional[OfflineQueueItem]:
        index = self._find(self._items[self.queue_key], item_id)
        if index is None:
            return None
        return copy.deepcopy(self._items[self.queue_key][index])

    def record_queue_failure(self, item_id: str, error: str) -> Optional[OfflineQueueItem]:
        """
        Count a failed replay attempt for a queue item.

        Args:
            item_id: The queue item.
            error: Short description of the failure.

        Returns:
            Optional[OfflineQueueItem]: Updated copy, or None if the item is gone.
        """
        now = self.clock()

        def mutator(items):
            index = self._find(items, item_id)
            if index is None:
                return None, None
            queue_item = items[index]
            queue_item.retry_count += 1
            queue_item.last_attempt_at = now
            queue_item.last_error = error
            return items, copy.deepcopy(queue_item)

        return self._mutate(self.queue_key, mutator)

    def remove_queue_item(self, item_id: str) -> bool:
        """Delete a queue item. Removing an unknown id is a no-op returning False."""
        def mutator(items):
            index = self._find(items, item_id)
            if index is None:
                return None, False
            del items[index]
            return items, True

        return self._mutate(self.queue_key, mutator)

    # =========================================================================
    # Dead letter
    # =========================================================================

    def get_dead_letter_items(self) -> List[OfflineQueueItem]:
        """Copies of the items set aside after exhausting their retry policy."""
        return copy.deepcopy(self._items[self.dead_letter_key])

    def move_to_dead_letter(self, item_id: str, reason: str) -> bool:
        """
        Set a queue item aside for manual handling.

        Returns:
            bool: False if the item is not in the queue.
        """
        queue_item = self.get_queue_item(item_id)
        if queue_item is None:
            return False
        queue_item.last_error = reason

        def add(dead):
            if self._find(dead, item_id) is not None:
                return None, None
            dead.append(queue_item)
            return dead, None

        self._mutate(self.dead_letter_key, add)
        self.remove_queue_item(item_id)
        logger.warning(f"Moved queue item {item_id} to dead letter after {queue_item.retry_count} attempt(s): {reason}")
        return True

    def requeue_dead_letter(self, item_id: str) -> bool:
        """
        Put a dead-letter item back at the tail of the queue for another attempt.

        Returns:
            bool: False if the item is not in the dead letter.
        """
        index = self._find(self._items[self.dead_letter_key], item_id)
        if index is None:
            return False
        queue_item = copy.deepcopy(self._items[self.dead_letter_key][index])
        queue_item.last_attempt_at = None

        def add(items):
            if self._find(items, item_id) is not None:
                return None, None
            items.append(queue_item)
            return items, None

        self._mutate(self.queue_key, add)
        self.discard_dead_letter(item_id)
        logger.info(f"Requeued dead-letter item {item_id}")
        return True

    def discard_dead_letter(self, item_id: str) -> bool:
        """Delete a dead-letter item. Unknown ids are a no-op returning False."""
        def mutator(dead):
            index = self._find(dead, item_id)
            if index is None:
                return None, False
            del dead[index]
            return dead, True

        return self._mutate(self.dead_letter_key, mutator)

    # =========================================================================
    # Status and reset
    # =========================================================================

    def get_status(self) -> QueueStatus:
        """Derived summary of the queue's current snapshot."""
        queue = self._items[self.queue_key]
        posts = self._items[self.posts_key]
        return QueueStatus(
            queue_length=len(queue),
            posts_length=len(posts),
            has_pending_items=bool(queue) or any(p.status in ATTENTION_STATUSES for p in posts),
            dead_letter_length=len(self._items[self.dead_letter_key]),
            failed_posts_length=sum(1 for p in posts if p.status == STATUS_FAILED),
        )

    def clear_all(self) -> None:
        """Empty every collection. Meant for an explicit user reset."""
        for key in self._factories:
            self._mutate(key, lambda items: ([], None))
        logger.info("Cleared all offline data")
