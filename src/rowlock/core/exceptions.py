"""Errors raised by row locks and their storage backends."""

from __future__ import annotations

from typing import Any, Optional


class LockError(Exception):
    """Base class for every error raised by ``rowlock``."""


class BusyLockError(LockError):
    """A live lock cell owned by another attempt was observed."""

    def __init__(self, cell: str) -> None:
        super().__init__(f"Lock already acquired for {cell}")
        self.cell = cell


class StaleLockError(LockError):
    """A stale lock cell was observed and the lock is configured to fail on it."""

    def __init__(self, row_key: Any, cell: Optional[str] = None) -> None:
        super().__init__(f"Stale lock on row {row_key!r}. Manual cleanup required.")
        self.row_key = row_key
        self.cell = cell


class StorageError(LockError):
    """The storage backend failed to perform a read or mutation."""


class ConsistencyError(StorageError):
    """Fewer replicas acknowledged a mutation than the consistency level requires."""

    def __init__(self, level: Any, required: int, acknowledged: int) -> None:
        super().__init__(
            f"Consistency level {level} requires {required} replica acks, got {acknowledged}"
        )
        self.level = level
        self.required = required
        self.acknowledged = acknowledged


class LockCleanupError(LockError):
    """Acquisition failed and releasing the partially written cells failed too.

    ``original`` is the error that made the acquisition fail, ``cleanup_error``
    the one raised while deleting the attempt's cells.
    """

    def __init__(self, original: BaseException, cleanup_error: BaseException) -> None:
        super().__init__(
            f"Lock acquisition failed ({original!r}) and cleanup failed ({cleanup_error!r})"
        )
        self.original = original
        self.cleanup_error = cleanup_error
