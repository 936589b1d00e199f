"""
Replay Service Module

This module drains the offline queue: it replays queued operations against
the remote API in FIFO order and syncs offline post drafts. Retry accounting
lives in the queue records; the cap and backoff come from an explicit
RetryPolicy. Items that exhaust the policy are moved to the dead letter for
user intervention instead of being dropped.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from config import settings
from data.models import (
    STATUS_FAILED, STATUS_PENDING, STATUS_SYNCED, STATUS_SYNCING, OfflinePost, OfflineQueueItem
)
from services.offline_queue import OfflineQueue
from services.protocols import ConnectivitySignal, RemoteApi
from utils.exceptions import (
    InvalidStatusTransitionError, RemoteUnavailableError, ReplayError, UnknownActionError
)
from utils.helpers import backoff_delay, now_ms
from utils.logger import get_logger

logger = get_logger(__name__)

# Outcomes of a single post sync attempt
SYNCED = "synced"
FAILED = "failed"
UNREACHABLE = "unreachable"
SKIPPED = "skipped"


@dataclass(frozen=True)
class RetryPolicy:
    """Maximum attempts and exponential backoff for queued operations."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.REPLAY_MAX_ATTEMPTS,
            base_delay_seconds=settings.REPLAY_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.REPLAY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, retry_count: int) -> float:
        """Seconds to wait after ``retry_count`` failed attempts."""
        return backoff_delay(retry_count, self.base_delay_seconds, self.max_delay_seconds)

    def is_exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_attempts

    def next_attempt_at(self, item: OfflineQueueItem) -> int:
        """Epoch ms before which ``item`` should not be replayed again."""
        if item.last_attempt_at is None or item.retry_count == 0:
            return 0
        return item.last_attempt_at + int(self.delay_for(item.retry_count) * 1000)


@dataclass
class DrainResult:
    """Counters describing one drain run."""
    replayed: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: int = 0
    posts_synced: int = 0
    posts_failed: int = 0
    went_offline: bool = False

    @property
    def changed_anything(self) -> bool:
        return any([self.replayed, self.failed, self.dead_lettered, self.posts_synced, self.posts_failed])


class ReplayService:
    """Drains the offline queue against the remote API."""

    def __init__(
        self,
        queue: OfflineQueue,
        api: RemoteApi,
        connectivity: Optional[ConnectivitySignal] = None,
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], int]] = None,
        auto_retry_failed_posts: Optional[bool] = None
    ):
        """
        Initialize the replay service.

        Args:
            queue: The offline queue to drain.
            api: Remote API used to replay operations.
            connectivity: Online/offline state; the drain is skipped while offline.
            policy: Retry cap and backoff, defaults to the configured policy.
            clock: Returns the current time in epoch milliseconds.
            auto_retry_failed_posts: Also resend drafts stuck in ``failed``.
        """
        self.queue = queue
        self.api = api
        self.connectivity = connectivity
        self.policy = policy or RetryPolicy.from_settings()
        self.clock = clock or now_ms
        self.auto_retry_failed_posts = (
            settings.OFFLINE_AUTO_RETRY_FAILED_POSTS if auto_retry_failed_posts is None else auto_retry_failed_posts
        )

    def _is_offline(self) -> bool:
        return self.connectivity is not None and not self.connectivity.is_online

    def _went_offline(self, error: Exception) -> None:
        logger.warning(f"Remote API unreachable, stopping drain: {error}")
        if self.connectivity is not None:
            self.connectivity.set_online(False)

    def drain(self) -> DrainResult:
        """
        Replay queued operations, then sync offline post drafts.

        Queue items are replayed in insertion order. The drain stops at the
        first item that is still backing off or that fails with a retryable
        error, so later operations never overtake earlier ones.

        Returns:
            DrainResult: What happened during this run.
        """
        result = DrainResult()

        if self._is_offline():
            result.skipped = len(self.queue.get_queue_items())
            logger.info("Offline, skipping drain")
            return result

        self._drain_queue(result)
        if not result.went_offline:
            self._drain_posts(result)

        if result.changed_anything:
            logger.info(
                f"Drain finished: {result.replayed} replayed, {result.failed} failed, "
                f"{result.dead_lettered} dead-lettered, {result.skipped} waiting, "
                f"{result.posts_synced} post(s) synced, {result.posts_failed} post(s) failed"
            )
        return result

    def _drain_queue(self, result: DrainResult) -> None:
        items = self.queue.get_queue_items()
        now = self.clock()

        for index, item in enumerate(items):
            remaining = len(items) - index

            if now < self.policy.next_attempt_at(item):
                logger.debug(f"Queue item {item.id} is backing off, {remaining} item(s) wait")
                result.skipped += remaining
                return

            try:
                self.api.replay(item.payload)
            except RemoteUnavailableError as e:
                # Not the item's fault; its retry budget is left alone
                self._went_offline(e)
                result.went_offline = True
                result.skipped += remaining
                return
            except UnknownActionError as e:
                # Can never succeed, set it aside right away
                self.queue.record_queue_failure(item.id, str(e))
                self.queue.move_to_dead_letter(item.id, str(e))
                result.failed += 1
                result.dead_lettered += 1
                continue
            except ReplayError as e:
                result.failed += 1
                updated = self.queue.record_queue_failure(item.id, str(e))
                if updated is not None and self.policy.is_exhausted(updated.retry_count):
                    self.queue.move_to_dead_letter(item.id, str(e))
                    result.dead_lettered += 1
                    continue
                logger.info(f"Replay of {item.id} failed ({e}), retrying later")
                result.skipped += remaining - 1
                return

            self.queue.remove_queue_item(item.id)
            result.replayed += 1

    def _drain_posts(self, result: DrainResult) -> None:
        for post in self.queue.get_offline_posts():
            if post.status == STATUS_SYNCED:
                # Left over from an interrupted run
                self.queue.remove_offline_post(post.id)
                continue

            retry_failed = (post.status == STATUS_FAILED and self.auto_retry_failed_posts
                            and not self.policy.is_exhausted(post.retry_count))
            if not (post.status == STATUS_PENDING or retry_failed):
                continue

            outcome = self._sync_post(post)
            if outcome == SYNCED:
                result.posts_synced += 1
            elif outcome == FAILED:
                result.posts_failed += 1
            elif outcome == UNREACHABLE:
                result.went_offline = True
                return

    def _sync_post(self, post: OfflinePost) -> str:
        """
        Send one draft through syncing -> synced/failed.

        If the remote API cannot be reached the draft returns to pending
        without counting a failure, so the next drain sends it again.
        """
        try:
            if not self.queue.update_post_status(post.id, STATUS_SYNCING):
                return SKIPPED
        except InvalidStatusTransitionError as e:
            # Another context changed the post in the meantime
            logger.info(f"Skipping offline post {post.id}: {e}")
            return SKIPPED

        try:
            self.api.create_post(post.content_fields())
        except RemoteUnavailableError as e:
            self.queue.update_post_status(post.id, STATUS_PENDING)
            self._went_offline(e)
            return UNREACHABLE
        except ReplayError as e:
            logger.warning(f"Failed to sync offline post {post.id}: {e}")
            self.queue.update_post_status(post.id, STATUS_FAILED)
            return FAILED

        self.queue.update_post_status(post.id, STATUS_SYNCED)
        self.queue.remove_offline_post(post.id)
        logger.info(f"Synced offline post {post.id}")
        return SYNCED

    def retry_post(self, post_id: str) -> bool:
        """
        Manually resend one draft, whatever the auto-retry setting says.

        Args:
            post_id: A pending or failed offline post.

        Returns:
            bool: True if the post reached the remote service.
        """
        post = self.queue.get_post(post_id)
        if post is None or post.status not in (STATUS_PENDING, STATUS_FAILED):
            return False
        if self._is_offline():
            logger.info(f"Offline, not retrying post {post_id}")
            return False
        return self._sync_post(post) == SYNCED
