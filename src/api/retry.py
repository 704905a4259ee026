# src/api/retry.py
#
# Retry with exponential backoff for storage writes that hit a locked/busy
# sqlite database. Any other error propagates on the first attempt.

import logging
import sqlite3
import time
from functools import wraps
from typing import Callable

from config.settings import DB_RETRY_ATTEMPTS, DB_RETRY_DELAY

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = ("locked", "busy")


def is_transient(error: Exception) -> bool:
    """True for sqlite 'database is locked' / 'database is busy' errors."""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def retry_on_busy(
    max_retries: int = None,
    initial_delay: float = None,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
):
    """
    Decorator for storage functions that should ride out write contention.

    Usage:
        @retry_on_busy()
        def insert_job(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            retries = DB_RETRY_ATTEMPTS if max_retries is None else max_retries
            delay = DB_RETRY_DELAY if initial_delay is None else initial_delay

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not is_transient(e) or attempt >= retries:
                        if is_transient(e):
                            logger.error(f"All {retries + 1} attempts failed for {func.__name__}. Last error: {e}")
                        raise
                    logger.warning(
                        f"Attempt {attempt + 1}/{retries + 1} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
                    delay = min(delay * exponential_base, max_delay)

        return wrapper
    return decorator
