"""
Utility functions for the assetcompute SDK.

This module provides internal helper functions used throughout the client.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import logging
import random
import time

logger = logging.getLogger(__name__)


def sleep_with_jitter(seconds: float, jitter_factor: float = 0.1) -> None:
    """
    Sleep for the given duration with random jitter.

    Adds random variation to sleep duration to prevent thundering herd
    problems when multiple clients poll simultaneously.

    Args:
        seconds: Base sleep duration in seconds.
        jitter_factor: Maximum percentage variation (default: 10%).

    Example:
        >>> sleep_with_jitter(10.0)  # Sleeps between 9.0 and 11.0 seconds
    """
    time.sleep(with_jitter(seconds, jitter_factor))


def with_jitter(seconds: float, jitter_factor: float = 0.1) -> float:
    """Returns `seconds` varied randomly by up to `jitter_factor` in either direction."""
    jitter = random.uniform(-jitter_factor, jitter_factor)
    return max(0.0, seconds * (1 + jitter))


def log_prefix(tracking_id: str | None) -> str:
    """Formats the `<id> | AC |` prefix used by every log line of the SDK."""
    _id = tracking_id or "unknown"
    return f"{_id[:26]:<26} | AC |"

