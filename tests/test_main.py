"""
Tests for the Offline Queue Main Application

Tests cover the composition root, argument parsing, the individual CLI
commands and the exit codes of main().
"""

import json
import pytest
from unittest.mock import MagicMock, patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from main import OfflineSyncApp, _parse_args_pairs, main, parse_arguments, run_command
from data.storage import FileStorage, InMemoryStorage
from utils.exceptions import ConfigurationError, RemoteUnavailableError


@pytest.fixture
def app(mock_api):
    app = OfflineSyncApp(storage=InMemoryStorage(), api=mock_api).start()
    yield app
    app.dispose()


def _run(app, argv):
    return run_command(app, parse_arguments(argv))


# =============================================================================
# Composition Root Tests
# =============================================================================

class TestOfflineSyncApp:
    """Tests for OfflineSyncApp wiring."""

    def test_defaults_to_file_storage(self, tmp_path, mock_api):
        app = OfflineSyncApp(storage_dir=str(tmp_path), api=mock_api)

        assert isinstance(app.storage, FileStorage)
        assert app.storage.directory == str(tmp_path)
        assert app.replay.queue is app.queue
        assert app.controller.connectivity is app.connectivity

    def test_dispose_closes_api(self, mock_api):
        app = OfflineSyncApp(storage=InMemoryStorage(), api=mock_api).start()

        app.dispose()

        mock_api.close.assert_called_once()


# =============================================================================
# Argument Parsing Tests
# =============================================================================

class TestArgumentParsing:
    """Tests for parse_arguments() and key=value parsing."""

    def test_enqueue_arguments(self):
        args = parse_arguments(["--log-level", "DEBUG", "enqueue", "--action", "like", "--arg", "postId=p1"])

        assert args.command == "enqueue"
        assert args.action == "like"
        assert args.args == ["postId=p1"]
        assert args.log_level == "DEBUG"

    def test_log_level_defaults_to_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "WARNING")

        assert parse_arguments(["status"]).log_level == "WARNING"

    def test_unknown_action_rejected(self):
        with pytest.raises(SystemExit):
            parse_arguments(["enqueue", "--action", "bookmark"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_pairs_decode_json_values(self):
        assert _parse_args_pairs(["postId=p1", "count=3", "tags=[\"a\"]", "note=a=b"]) == {
            "postId": "p1",
            "count": 3,
            "tags": ["a"],
            "note": "a=b",
        }

    def test_pairs_require_equals(self):
        with pytest.raises(ValueError):
            _parse_args_pairs(["postId"])


# =============================================================================
# Command Tests
# =============================================================================

class TestCommands:
    """Tests for run_command()."""

    def test_add_post_and_status(self, app, capsys):
        assert _run(app, ["add-post", "--content", "hi", "--author-id", "u1"]) == 0
        post_id = capsys.readouterr().out.strip()

        assert _run(app, ["status"]) == 0
        status = json.loads(capsys.readouterr().out)

        assert app.queue.get_post(post_id).status == "pending"
        assert status["postsLength"] == 1
        assert status["hasPendingItems"] is True

    def test_enqueue_and_list(self, app, capsys):
        assert _run(app, ["enqueue", "--action", "comment", "--arg", "postId=p1", "--arg", "content=nice"]) == 0
        capsys.readouterr()

        assert _run(app, ["list"]) == 0
        listing = json.loads(capsys.readouterr().out)

        assert listing["queueItems"][0]["payload"] == {"action": "comment", "args": {"postId": "p1", "content": "nice"}}
        assert listing["offlinePosts"] == []
        assert listing["deadLetter"] == []

    def test_drain(self, app, mock_api, capsys):
        _run(app, ["enqueue", "--action", "like", "--arg", "postId=p1"])
        capsys.readouterr()

        assert _run(app, ["drain"]) == 0
        result = json.loads(capsys.readouterr().out)

        assert result["replayed"] == 1
        mock_api.replay.assert_called_once_with({"action": "like", "args": {"postId": "p1"}})

    def test_drain_offline_exit_code(self, app, mock_api):
        _run(app, ["enqueue", "--action", "like", "--arg", "postId=p1"])
        mock_api.replay.side_effect = RemoteUnavailableError("down")

        assert _run(app, ["drain"]) == 1
        assert app.connectivity.is_online is False

    def test_drain_with_probe(self, app):
        app.connectivity.probe = MagicMock(return_value=True)

        assert _run(app, ["drain", "--probe"]) == 0
        app.connectivity.probe.assert_called_once()

    def test_requeue(self, app, mock_api):
        app.queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})
        item_id = app.queue.get_queue_items()[0].id
        app.queue.move_to_dead_letter(item_id, "manual")

        assert _run(app, ["requeue", item_id]) == 0
        assert _run(app, ["requeue", item_id]) == 1
        assert [i.id for i in app.queue.get_queue_items()] == [item_id]

    def test_clear_requires_confirmation(self, app):
        app.queue.add_to_queue({"action": "like", "args": {"postId": "p1"}})

        assert _run(app, ["clear"]) == 1
        assert app.queue.get_status().queue_length == 1

        assert _run(app, ["clear", "--yes"]) == 0
        assert app.queue.get_status().queue_length == 0


# =============================================================================
# Entry Point Tests
# =============================================================================

class TestMain:
    """Tests for main() exit codes."""

    def _argv(self, tmp_path, *command):
        return ["--storage-dir", str(tmp_path / "store"), "--log-file", str(tmp_path / "queue.log"), *command]

    def test_state_survives_between_runs(self, tmp_path, mock_api, capsys):
        with patch('main.RemoteApiClient', return_value=mock_api):
            assert main(self._argv(tmp_path, "enqueue", "--action", "follow", "--arg", "userId=u1")) == 0
            capsys.readouterr()
            assert main(self._argv(tmp_path, "status")) == 0

        status = json.loads(capsys.readouterr().out)
        assert status["queueLength"] == 1
        assert (tmp_path / "store" / "offline_queue.json").exists()

    def test_configuration_error(self, tmp_path):
        with patch('main.validate_settings', side_effect=ConfigurationError("bad config")), \
             patch('main.OfflineSyncApp') as mock_app_cls:
            assert main(self._argv(tmp_path, "status")) == 1
            mock_app_cls.assert_not_called()

    def test_invalid_pair_is_handled(self, tmp_path, mock_api):
        with patch('main.RemoteApiClient', return_value=mock_api):
            assert main(self._argv(tmp_path, "enqueue", "--action", "like", "--arg", "postId")) == 1

    def test_unexpected_error(self, tmp_path):
        with patch('main.OfflineSyncApp', side_effect=RuntimeError("boom")):
            assert main(self._argv(tmp_path, "status")) == 2

    def test_app_disposed_after_command(self, tmp_path):
        mock_app = MagicMock()
        mock_app.start.return_value = mock_app
        mock_app.queue.get_status.return_value.to_dict.return_value = {}

        with patch('main.OfflineSyncApp', return_value=mock_app):
            assert main(self._argv(tmp_path, "status")) == 0

        mock_app.dispose.assert_called_once()
