"""
Error taxonomy for the activity monitor.

Provides:
- Per-entity fetch failures (non-fatal, counted and skipped)
- Batch-fatal store failures carrying the partial run summary
- Per-key snapshot render failures (non-fatal)
- Rejection of concurrent runs
- User-friendly messages for the HTTP surface

Cancellation is not an error: runs report it through their summary.
"""
import logging
from typing import Any, Optional

from config.settings import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigurationError",
    "TransientFetchFailure",
    "StoreWriteFailure",
    "SnapshotRenderFailure",
    "SyncAlreadyRunningError",
    "user_friendly_error",
    "is_rate_limited_status",
]


class TransientFetchFailure(Exception):
    """Raised when the activity source cannot deliver a calendar for one entity."""

    def __init__(
        self,
        handle: str,
        message: str,
        status_code: Optional[int] = None,
        not_found: bool = False,
    ):
        self.handle = handle
        self.message = message
        self.status_code = status_code
        self.not_found = not_found
        super().__init__(f"{handle}: {message}")


class StoreWriteFailure(Exception):
    """
    Raised when a batch could not be written.

    The in-flight batch has been rolled back; batches committed before it
    remain durable. ``summary`` holds the counts accumulated up to the abort.
    """

    def __init__(self, message: str, summary: Any = None):
        self.message = message
        self.summary = summary
        super().__init__(message)


class SnapshotRenderFailure(Exception):
    """Raised when one (view, window) snapshot cannot be computed or rendered."""

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"{key}: {message}")


class SyncAlreadyRunningError(Exception):
    """Raised when a run is triggered while another one holds the guard."""

    def __init__(self, job: str = "sync"):
        self.job = job
        super().__init__(f"A {job} is already in progress")


def user_friendly_error(error: Exception) -> str:
    """
    Convert exception to user-friendly error message.

    Args:
        error: The exception to convert

    Returns:
        User-friendly error message
    """
    if isinstance(error, SyncAlreadyRunningError):
        return f"A {error.job} is already in progress. Please wait."

    if isinstance(error, StoreWriteFailure):
        return "The database rejected the update. Already committed batches were kept."

    if isinstance(error, ConfigurationError):
        return "The service is misconfigured. Check the activity settings."

    error_type = type(error).__name__
    error_str = str(error).lower()

    if "timeout" in error_str or "timed out" in error_str:
        return "The request timed out. Please try again."

    if "connection" in error_str or "network" in error_str:
        return "Unable to connect. Please check your internet connection."

    if "unauthorized" in error_str or "401" in error_str:
        return "GitHub rejected the token. Please check GITHUB_TOKEN."

    if "rate limit" in error_str or "429" in error_str:
        return "GitHub rate limit reached. Please wait a moment and try again."

    if "not found" in error_str or "404" in error_str:
        return "The requested resource was not found."

    if isinstance(error, TransientFetchFailure):
        return f"Could not fetch activity for {error.handle}."

    return f"An error occurred: {error_type}. Please try again."


def is_rate_limited_status(status_code: int) -> bool:
    """
    Check if an HTTP status code signals an exhausted rate budget.

    GitHub answers secondary rate limits with 403 and primary ones with 429.
    """
    return status_code in (403, 429)
