"""
Configuration Settings for the Offline Queue

This module centralizes all configuration settings for the offline mutation
queue, including storage locations, remote API access, replay policy and
logging options. Values come from environment variables (optionally loaded
from a .env file) with safe defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable ("true"/"1"/"yes" are truthy)."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


# =============================================================================
# Storage Settings
# =============================================================================

OFFLINE_STORAGE_DIR = os.getenv("OFFLINE_STORAGE_DIR", os.path.join(APP_ROOT, ".offline_storage"))

# Collection keys (stable, shared by every context of the same origin)
OFFLINE_QUEUE_KEY = "offline_queue"
OFFLINE_POSTS_KEY = "offline_posts"
OFFLINE_DEAD_LETTER_KEY = "offline_dead_letter"

OFFLINE_SCHEMA_VERSION = 1                                                  # Envelope schema written on save
OFFLINE_STORAGE_MAX_BYTES = _env_int("OFFLINE_STORAGE_MAX_BYTES", 5 * 1024 * 1024)
OFFLINE_OPTIMISTIC_CONCURRENCY = _env_bool("OFFLINE_OPTIMISTIC_CONCURRENCY", True)
OFFLINE_SAVE_CONFLICT_RETRIES = _env_int("OFFLINE_SAVE_CONFLICT_RETRIES", 3)

# =============================================================================
# Remote API Settings
# =============================================================================

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000")
API_AUTH_TOKEN = os.getenv("API_AUTH_TOKEN")
API_REQUEST_TIMEOUT = _env_float("API_REQUEST_TIMEOUT", 10)   # Seconds per replayed request

# Connectivity
CONNECTIVITY_HEALTH_URL = os.getenv("CONNECTIVITY_HEALTH_URL")
CONNECTIVITY_PROBE_TIMEOUT = _env_float("CONNECTIVITY_PROBE_TIMEOUT", 3)
CONNECTIVITY_INITIAL_ONLINE = _env_bool("CONNECTIVITY_INITIAL_ONLINE", True)

# =============================================================================
# Replay Policy
# =============================================================================

REPLAY_MAX_ATTEMPTS = _env_int("REPLAY_MAX_ATTEMPTS", 3)
REPLAY_BASE_DELAY_SECONDS = _env_float("REPLAY_BASE_DELAY_SECONDS", 1)
REPLAY_MAX_DELAY_SECONDS = _env_float("REPLAY_MAX_DELAY_SECONDS", 60)
OFFLINE_AUTO_RETRY_FAILED_POSTS = _env_bool("OFFLINE_AUTO_RETRY_FAILED_POSTS", False)

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "offline_queue.log")
