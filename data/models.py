"""
Data Models for the Offline Queue

This module contains the records that flow through the offline queue and
the read-only status summary exposed to UI code. Records serialize to
plain JSON-compatible dictionaries.
"""

import copy
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

# OfflinePost statuses
STATUS_PENDING = "pending"
STATUS_SYNCING = "syncing"
STATUS_FAILED = "failed"
STATUS_SYNCED = "synced"

POST_STATUSES = (STATUS_PENDING, STATUS_SYNCING, STATUS_FAILED, STATUS_SYNCED)

# Allowed status transitions; synced is terminal.
# syncing -> pending undoes an attempt that never reached the remote API.
POST_TRANSITIONS = {
    STATUS_PENDING: (STATUS_SYNCING,),
    STATUS_SYNCING: (STATUS_SYNCED, STATUS_FAILED, STATUS_PENDING),
    STATUS_FAILED: (STATUS_SYNCING,),
    STATUS_SYNCED: (),
}

# Statuses that count as "pending work" in the status summary
ATTENTION_STATUSES = (STATUS_PENDING, STATUS_SYNCING, STATUS_FAILED)

POST_TYPES = ("text", "media")

# Fields the queue assigns itself; ignored when supplied by callers
POST_SYSTEM_FIELDS = ("id", "created_at", "status", "retry_count")
QUEUE_SYSTEM_FIELDS = ("id", "timestamp", "retry_count")


def can_transition(current: str, requested: str) -> bool:
    """Return True if an offline post may move from ``current`` to ``requested``."""
    return requested in POST_TRANSITIONS.get(current, ())


@dataclass
class OfflineQueueItem:
    """A pending remote operation waiting to be replayed."""
    id: str
    timestamp: int                          # Epoch milliseconds
    payload: Dict[str, Any]                 # {"action": ..., "args": {...}}
    retry_count: int = 0
    last_attempt_at: Optional[int] = None   # Epoch ms of the last failed replay
    last_error: Optional[str] = None

    @property
    def action(self) -> Optional[str]:
        return self.payload.get("action")

    @property
    def args(self) -> Dict[str, Any]:
        return self.payload.get("args") or {}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineQueueItem":
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError(f"Queue item payload must be a mapping, got {type(payload).__name__}")
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            payload=copy.deepcopy(payload),
            retry_count=int(data.get("retry_count", 0)),
            last_attempt_at=data.get("last_attempt_at"),
            last_error=data.get("last_error"),
        )


@dataclass
class OfflinePost:
    """A post draft that has not reached the remote service yet."""
    id: str
    content: str
    author_id: str
    created_at: str                         # ISO-8601 UTC
    status: str = STATUS_PENDING
    retry_count: int = 0
    type: str = "text"                      # 'text' or 'media'
    image_urls: List[str] = field(default_factory=list)
    last_retry: Optional[str] = None        # ISO-8601 time of the last failed sync

    def content_fields(self) -> Dict[str, Any]:
        """The fields sent to the remote API when the post is synced."""
        return {
            "content": self.content,
            "author_id": self.author_id,
            "type": self.type,
            "image_urls": list(self.image_urls),
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflinePost":
        status = data.get("status", STATUS_PENDING)
        if status not in POST_STATUSES:
            raise ValueError(f"Unknown offline post status: {status!r}")
        return cls(
            id=str(data["id"]),
            content=data.get("content", ""),
            author_id=data.get("author_id", ""),
            created_at=data["created_at"],
            status=status,
            retry_count=int(data.get("retry_count", 0)),
            type=data.get("type", "text"),
            image_urls=list(data.get("image_urls") or []),
            last_retry=data.get("last_retry"),
        )


@dataclass(frozen=True)
class QueueStatus:
    """Derived, read-only summary of the queue for UI consumers."""
    queue_length: int
    posts_length: int
    has_pending_items: bool
    dead_letter_length: int = 0
    failed_posts_length: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queueLength": self.queue_length,
            "postsLength": self.posts_length,
            "hasPendingItems": self.has_pending_items,
            "deadLetterLength": self.dead_letter_length,
            "failedPostsLength": self.failed_posts_length,
        }
