"""
Tests for the OfflineSyncController Class

Tests cover draining on reconnect, storage event wiring, failure
containment and the read model exposed to UI code.
"""

import pytest
from unittest.mock import MagicMock
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.connectivity import ConnectivityObserver
from services.replay_service import ReplayService, RetryPolicy
from services.sync_controller import OfflineSyncController
from utils.exceptions import StorageWriteError


@pytest.fixture
def connectivity(mock_session):
    return ConnectivityObserver(initial_online=False, health_url="", session=mock_session)


@pytest.fixture
def controller(queue, mock_api, connectivity, fake_clock):
    replay = ReplayService(queue, mock_api, connectivity, policy=RetryPolicy(), clock=fake_clock,
                           auto_retry_failed_posts=False)
    controller = OfflineSyncController(queue, connectivity, replay)
    controller.start()
    yield controller
    controller.dispose()


class TestReconnect:
    """Tests for draining when connectivity returns."""

    def test_drains_when_back_online(self, controller, queue, connectivity, mock_api, post_fields):
        queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})
        queue.add_offline_post(post_fields)

        connectivity.mark_online()

        assert queue.get_status().has_pending_items is False
        assert controller.last_drain.replayed == 1
        assert controller.last_drain.posts_synced == 1

    def test_going_offline_does_not_drain(self, controller, connectivity, mock_api, queue):
        connectivity.mark_online()
        queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})

        connectivity.mark_offline()

        assert queue.get_status().queue_length == 1
        mock_api.replay.assert_not_called()

    def test_dispose_stops_draining(self, controller, connectivity, queue, mock_api):
        queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})
        controller.dispose()

        connectivity.mark_online()

        mock_api.replay.assert_not_called()

    def test_start_is_idempotent(self, controller, connectivity, queue, mock_api):
        controller.start()
        queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})

        connectivity.mark_online()

        assert mock_api.replay.call_count == 1


class TestFailureContainment:
    """Tests for errors raised during a drain."""

    def test_queue_errors_are_logged_not_raised(self, queue, connectivity):
        replay = MagicMock()
        replay.drain.side_effect = StorageWriteError("quota exceeded")
        controller = OfflineSyncController(queue, connectivity, replay)

        assert controller.drain() is None
        assert controller.last_drain is None


class TestReadModel:
    """Tests for state() and cross-tab refresh."""

    def test_state(self, controller, queue, post_fields):
        post_id = queue.add_offline_post(post_fields)

        state = controller.state()

        assert state["isOnline"] is False
        assert [p.id for p in state["offlinePosts"]] == [post_id]
        assert state["queueItems"] == []
        assert state["status"]["postsLength"] == 1
        assert state["status"]["hasPendingItems"] is True

    def test_sees_writes_from_other_tab(self, controller, queue_factory):
        other_tab = queue_factory(source="tab2")

        other_tab.add_to_queue({"action": "follow", "args": {"userId": "u1"}})

        assert controller.state()["status"]["queueLength"] == 1
