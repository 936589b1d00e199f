"""
Configuration Validation for the Offline Queue

This module contains configuration validation logic and the startup
configuration summary. Extracted from settings.py for better separation
of concerns.
"""

from utils.exceptions import ConfigurationError
from utils.helpers import is_valid_url
from utils.logger import get_logger

logger = get_logger(__name__)


def validate_settings():
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    if not settings.OFFLINE_STORAGE_DIR:
        errors.append("OFFLINE_STORAGE_DIR must not be empty")

    # Collection keys must be distinct, otherwise collections overwrite each other
    keys = [settings.OFFLINE_QUEUE_KEY, settings.OFFLINE_POSTS_KEY, settings.OFFLINE_DEAD_LETTER_KEY]
    if len(set(keys)) != len(keys):
        errors.append(f"Offline collection keys must be distinct, got {keys}")

    if not settings.API_BASE_URL or not is_valid_url(settings.API_BASE_URL):
        errors.append(f"API_BASE_URL is not a valid URL: {settings.API_BASE_URL!r}")

    if settings.CONNECTIVITY_HEALTH_URL and not is_valid_url(settings.CONNECTIVITY_HEALTH_URL):
        errors.append(f"CONNECTIVITY_HEALTH_URL is not a valid URL: {settings.CONNECTIVITY_HEALTH_URL!r}")

    if not settings.API_AUTH_TOKEN:
        logger.warning("API_AUTH_TOKEN is not set. Replayed requests will be sent unauthenticated.")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("REPLAY_MAX_ATTEMPTS", settings.REPLAY_MAX_ATTEMPTS, 1, 100),
        ("OFFLINE_SAVE_CONFLICT_RETRIES", settings.OFFLINE_SAVE_CONFLICT_RETRIES, 0, 50),
        ("OFFLINE_STORAGE_MAX_BYTES", settings.OFFLINE_STORAGE_MAX_BYTES, 1024, 1024 * 1024 * 1024),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    # Validate delay and timeout values are positive
    positive_settings = [
        ("REPLAY_BASE_DELAY_SECONDS", settings.REPLAY_BASE_DELAY_SECONDS),
        ("REPLAY_MAX_DELAY_SECONDS", settings.REPLAY_MAX_DELAY_SECONDS),
        ("API_REQUEST_TIMEOUT", settings.API_REQUEST_TIMEOUT),
        ("CONNECTIVITY_PROBE_TIMEOUT", settings.CONNECTIVITY_PROBE_TIMEOUT),
    ]

    for name, value in positive_settings:
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    if settings.REPLAY_MAX_DELAY_SECONDS < settings.REPLAY_BASE_DELAY_SECONDS:
        errors.append("REPLAY_MAX_DELAY_SECONDS must not be smaller than REPLAY_BASE_DELAY_SECONDS")

    if settings.LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"LOG_LEVEL must be a standard logging level, got {settings.LOG_LEVEL}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "storage": {
            "directory": str(settings.OFFLINE_STORAGE_DIR),
            "schema_version": settings.OFFLINE_SCHEMA_VERSION,
            "max_bytes": settings.OFFLINE_STORAGE_MAX_BYTES,
            "optimistic_concurrency": settings.OFFLINE_OPTIMISTIC_CONCURRENCY,
        },
        "api": {
            "base_url": settings.API_BASE_URL,
            "authenticated": bool(settings.API_AUTH_TOKEN),
            "timeout": settings.API_REQUEST_TIMEOUT,
        },
        "replay": {
            "max_attempts": settings.REPLAY_MAX_ATTEMPTS,
            "base_delay": settings.REPLAY_BASE_DELAY_SECONDS,
            "max_delay": settings.REPLAY_MAX_DELAY_SECONDS,
            "auto_retry_failed_posts": settings.OFFLINE_AUTO_RETRY_FAILED_POSTS,
        },
    }
