"""
Exception hierarchy for the membership watcher.

The poll scheduler only distinguishes "retryable" from "fatal" failures.
Adapters (ESI, Discord, state store) translate their own failures into
these types so the scheduler never sees httpx or OS errors directly.
"""

from __future__ import annotations


class AllianceWatchError(Exception):
    """Base exception for all watcher errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FetchError(AllianceWatchError):
    """
    Raised when the current roster cannot be fetched.

    ``retry_after`` is the wait (seconds) the upstream asked for, if any.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after = retry_after


class NotifyError(AllianceWatchError):
    """Raised when an event could not be delivered. Always retryable."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class StoreError(AllianceWatchError):
    """Raised when the snapshot cannot be written or read."""
    pass


class SnapshotCorruptError(StoreError):
    """Persisted snapshot failed its integrity check."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Snapshot at {path} is corrupt ({reason}). Inspect the file, then "
            f"run `alliance-watch baseline --force` to re-establish the baseline."
        )
        self.path = path
        self.reason = reason


class IncompatibleSnapshotError(StoreError):
    """Persisted snapshot was written by another format version or alliance."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Snapshot at {path} is incompatible ({reason}). Move it aside or run "
            f"`alliance-watch baseline --force` to start from a fresh baseline."
        )
        self.path = path
        self.reason = reason


class FatalError(AllianceWatchError):
    """Unrecoverable condition; the process must exit non-zero."""
    pass


class RetryExhaustedError(AllianceWatchError):
    """A retried operation ran out of attempts (or was cut short by shutdown)."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: BaseException | None,
        aborted: bool = False,
    ):
        reason = "aborted by shutdown" if aborted else f"gave up after {attempts} attempts"
        super().__init__(f"{operation} {reason}: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.aborted = aborted
