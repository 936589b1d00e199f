"""
Helper Utility Module

This module provides various helper functions used throughout the offline
queue: id generation, clocks and the retry backoff calculation.
"""

import random
import string
import time
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """
    Current time as epoch milliseconds.

    Returns:
        int: Milliseconds since the Unix epoch.
    """
    return int(time.time() * 1000)


def ms_to_iso(timestamp_ms: int) -> str:
    """
    Convert epoch milliseconds to an ISO-8601 UTC string.

    Args:
        timestamp_ms: Milliseconds since the Unix epoch.

    Returns:
        str: e.g. ``2024-01-15T10:00:00.000Z``
    """
    seconds, millis = divmod(int(timestamp_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{millis:03d}Z"


def generate_id(timestamp_ms: Optional[int] = None) -> str:
    """
    Generate a unique identifier for an offline record.

    Args:
        timestamp_ms: Creation time to embed, defaults to now.

    Returns:
        str: ``offline_<epoch_ms>_<9 random base36 chars>``
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    suffix = ''.join(random.choice(_BASE36) for _ in range(9))
    return f"offline_{timestamp_ms}_{suffix}"


def backoff_delay(retry_count: int, base_delay: float = 1.0, max_delay: Optional[float] = None) -> float:
    """
    Exponential backoff delay for the given number of failed attempts.

    Args:
        retry_count: Failed attempts so far
        base_delay: Delay in seconds for the first retry
        max_delay: Upper bound for the delay (optional)

    Returns:
        float: Seconds to wait before the next attempt
    """
    delay = base_delay * (2 ** max(retry_count, 0))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is valid.

    Args:
        url: The URL to validate

    Returns:
        bool: True if the URL is valid, False otherwise
    """
    try:
        result = urlparse(url)
        return all([result.scheme, result.netloc])
    except Exception:
        return False


