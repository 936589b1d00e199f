"""
Shared Test Fixtures for the Offline Queue

This module provides common fixtures used across all test modules.
Fixtures include a controllable clock, in-memory storage, queue factories
(one queue per simulated browser tab), a mock remote API and mock HTTP
responses.
"""

import pytest
from unittest.mock import MagicMock
from typing import Optional, Dict, Any, Iterable
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# =============================================================================
# Clock and Id Fixtures
# =============================================================================

class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture
def fake_clock():
    """
    Controllable clock for queue and replay tests.

    Usage:
        def test_backoff(fake_clock):
            fake_clock.advance(5)

    Returns:
        FakeClock: Callable returning the current fake time in epoch ms.
    """
    return FakeClock()


@pytest.fixture
def sequential_ids():
    """
    Factory for deterministic id generators.

    Usage:
        id_factory = sequential_ids(["a1", "b1"])

    Returns:
        callable: Builds an id_factory yielding the given ids in order.
    """
    def _create(ids: Iterable[str]):
        iterator = iter(ids)
        return lambda timestamp: next(iterator)

    return _create


# =============================================================================
# Storage and Queue Fixtures
# =============================================================================

@pytest.fixture
def memory_storage():
    """Shared in-memory storage, standing in for one origin's localStorage."""
    from data.storage import InMemoryStorage
    return InMemoryStorage()


@pytest.fixture
def queue_factory(memory_storage, fake_clock):
    """
    Factory fixture for creating OfflineQueue instances.

    Each call builds a new queue (a new "tab") on the same storage unless
    another storage is passed.

    Usage:
        def test_queue(queue_factory):
            tab1 = queue_factory(source="tab1")
            tab2 = queue_factory(source="tab2")

    Returns:
        callable: A factory function for creating OfflineQueue objects.
    """
    from data.persistence import QueuePersistence
    from services.offline_queue import OfflineQueue

    def _create_queue(
        storage=None,
        source: Optional[str] = None,
        id_factory=None,
        optimistic_concurrency: bool = True,
        conflict_retries: int = 3,
        on_anomaly=None
    ) -> OfflineQueue:
        persistence = QueuePersistence(
            storage if storage is not None else memory_storage,
            source=source,
            on_anomaly=on_anomaly
        )
        return OfflineQueue(
            persistence,
            clock=fake_clock,
            id_factory=id_factory,
            optimistic_concurrency=optimistic_concurrency,
            conflict_retries=conflict_retries
        )

    return _create_queue


@pytest.fixture
def queue(queue_factory):
    """A single queue on fresh in-memory storage."""
    return queue_factory(source="tab1")


@pytest.fixture
def post_fields():
    """Post fields as UI code passes them to add_offline_post."""
    return {
        "content": "Offline hello #python",
        "author_id": "user-123",
        "type": "text",
        "image_urls": [],
    }


# =============================================================================
# Remote API Fixtures
# =============================================================================

@pytest.fixture
def mock_api():
    """
    Mock RemoteApi that succeeds by default.

    Usage:
        mock_api.replay.side_effect = ReplayHTTPError("boom", status_code=500)

    Returns:
        MagicMock: Object with replay() and create_post() methods.
    """
    api = MagicMock()
    api.replay.return_value = {"ok": True}
    api.create_post.return_value = {"id": "remote-post-1"}
    return api


@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(status_code=200, json_data={'key': 'value'})

    Returns:
        callable: A factory function for creating mock responses.
    """
    def _create_response(
        status_code: int = 200,
        json_data: Optional[Dict[str, Any]] = None,
        reason: str = 'OK',
        content: Optional[bytes] = None
    ) -> MagicMock:
        """
        Create a mock HTTP response object.

        Args:
            status_code: HTTP status code (default 200).
            json_data: Dictionary to return from response.json().
            reason: HTTP reason phrase.
            content: Raw body; derived from json_data when omitted.

        Returns:
            MagicMock: A mock response object mimicking requests.Response.
        """
        import json

        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.reason = reason
        mock_response.ok = 200 <= status_code < 300

        if content is None:
            content = json.dumps(json_data).encode('utf-8') if json_data is not None else b''
        mock_response.content = content

        if json_data is not None:
            mock_response.json.return_value = json_data
        else:
            mock_response.json.side_effect = ValueError("No JSON data")

        return mock_response

    return _create_response


@pytest.fixture
def mock_session(mock_http_response):
    """
    Mock requests.Session whose request()/head() return a 200 response.

    Returns:
        MagicMock: Session mock with a real dict for headers.
    """
    session = MagicMock()
    session.headers = {}
    session.request.return_value = mock_http_response(json_data={"ok": True})
    session.head.return_value = mock_http_response()
    return session
