"""
Offline Queue Application

This is the main entry point for the offline mutation queue. It builds the
queue and its collaborators from configuration (the composition root) and
offers a small command line interface to inspect, fill, drain and reset the
persisted queue.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from config import settings
from config.validators import get_config_summary, validate_settings
from data.persistence import QueuePersistence
from data.storage import FileStorage
from services.api_client import ACTION_ENDPOINTS, RemoteApiClient
from services.connectivity import ConnectivityObserver
from services.offline_queue import OfflineQueue
from services.replay_service import ReplayService, RetryPolicy
from services.sync_controller import OfflineSyncController
from utils.exceptions import OfflineQueueError
from utils.logger import get_logger, setup_file_logging

# Set up logging
logger = get_logger(__name__)


class OfflineSyncApp:
    """
    Composition root owning one queue and its collaborators.

    Lifecycle: construct -> start() -> use -> dispose().
    """

    def __init__(self, storage_dir: Optional[str] = None, storage=None, api: Optional[RemoteApiClient] = None):
        """
        Build the queue stack from configuration.

        Args:
            storage_dir: Directory for FileStorage, defaults to settings.OFFLINE_STORAGE_DIR.
            storage: A ready KeyValueStorage (overrides storage_dir).
            api: Remote API client, defaults to one built from settings.
        """
        self.storage = storage or FileStorage(
            storage_dir or settings.OFFLINE_STORAGE_DIR,
            max_bytes=settings.OFFLINE_STORAGE_MAX_BYTES
        )
        self.persistence = QueuePersistence(self.storage)
        self.queue = OfflineQueue(self.persistence)
        self.connectivity = ConnectivityObserver()
        self.api = api or RemoteApiClient()
        self.replay = ReplayService(self.queue, self.api, self.connectivity, RetryPolicy.from_settings())
        self.controller = OfflineSyncController(self.queue, self.connectivity, self.replay)

    def start(self) -> "OfflineSyncApp":
        self.controller.start()
        return self

    def dispose(self) -> None:
        self.controller.dispose()
        self.api.close()
        self.connectivity.session.close()


def _parse_args_pairs(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` strings into a dict; values are parsed as JSON when possible."""
    args = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"Expected key=value, got {pair!r}")
        key, value = pair.split('=', 1)
        try:
            args[key] = json.loads(value)
        except ValueError:
            args[key] = value
    return args


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Offline Queue')
    parser.add_argument('--storage-dir', type=str, default=None, help='Directory holding the persisted queue')
    parser.add_argument('--log-file', type=str, default=settings.LOG_FILE, help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default=settings.LOG_LEVEL, help='Logging level')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('status', help='Show the queue status summary')
    sub.add_parser('list', help='List offline posts, queued operations and dead-letter items')

    add_post = sub.add_parser('add-post', help='Save an offline post draft')
    add_post.add_argument('--content', required=True)
    add_post.add_argument('--author-id', required=True)
    add_post.add_argument('--type', choices=['text', 'media'], default='text')
    add_post.add_argument('--image-url', action='append', default=[], dest='image_urls')

    enqueue = sub.add_parser('enqueue', help='Queue a remote operation')
    enqueue.add_argument('--action', required=True, choices=sorted(ACTION_ENDPOINTS))
    enqueue.add_argument('--arg', action='append', default=[], dest='args',
                         help='Operation argument as key=value (repeatable)')

    drain = sub.add_parser('drain', help='Replay queued operations and sync drafts')
    drain.add_argument('--probe', action='store_true', help='Check connectivity before draining')

    requeue = sub.add_parser('requeue', help='Move a dead-letter item back into the queue')
    requeue.add_argument('item_id')

    clear = sub.add_parser('clear', help='Delete all offline data')
    clear.add_argument('--yes', action='store_true', help='Confirm the reset')

    return parser.parse_args(argv)


def run_command(app: OfflineSyncApp, args) -> int:
    """
    Execute one CLI command against a started app.

    Returns:
        int: Exit code (0 success, 1 handled failure).
    """
    queue = app.queue

    if args.command == 'status':
        _print_json(queue.get_status().to_dict())
        return 0

    if args.command == 'list':
        _print_json({
            "offlinePosts": [asdict(p) for p in queue.get_offline_posts()],
            "queueItems": [asdict(i) for i in queue.get_queue_items()],
            "deadLetter": [asdict(i) for i in queue.get_dead_letter_items()],
        })
        return 0

    if args.command == 'add-post':
        post_id = queue.add_offline_post({
            "content": args.content,
            "author_id": args.author_id,
            "type": args.type,
            "image_urls": args.image_urls,
        })
        print(post_id)
        return 0

    if args.command == 'enqueue':
        item_id = queue.add_to_queue({"action": args.action, "args": _parse_args_pairs(args.args)})
        print(item_id)
        return 0

    if args.command == 'drain':
        if args.probe:
            app.connectivity.probe()
        result = app.controller.drain()
        if result is None:
            return 1
        _print_json(asdict(result))
        return 1 if result.went_offline else 0

    if args.command == 'requeue':
        if not queue.requeue_dead_letter(args.item_id):
            logger.warning(f"No dead-letter item with id {args.item_id}")
            return 1
        return 0

    if args.command == 'clear':
        if not args.yes:
            logger.warning("Refusing to clear offline data without --yes")
            return 1
        queue.clear_all()
        return 0

    logger.error(f"Unknown command: {args.command}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    # Parse command line arguments
    args = parse_arguments(argv)

    # Set up logging
    # An unknown LOG_LEVEL is reported by validate_settings below
    log_level = getattr(logging, args.log_level, logging.INFO)
    setup_file_logging(args.log_file, log_level)

    app = None
    try:
        validate_settings()
        logger.debug(f"Configuration: {get_config_summary()}")

        app = OfflineSyncApp(storage_dir=args.storage_dir).start()
        exit_code = run_command(app, args)

    except (OfflineQueueError, ValueError) as e:
        logger.error(f"Offline queue error: {e}")
        exit_code = 1
    except Exception as e:
        logger.error(f"Unhandled exception in offline queue: {e}", exc_info=True)
        exit_code = 2
    finally:
        if app is not None:
            app.dispose()

    logger.debug(f"Offline queue command '{args.command}' finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
