"""Lock protocol primitives."""

from .clock import Clock, ManualClock, SystemClock
from .exceptions import (
    BusyLockError,
    ConsistencyError,
    LockCleanupError,
    LockError,
    StaleLockError,
    StorageError,
)
from .locks import DistributedRowLock, RowLockManager
from .models import ConsistencyLevel, LockCell, LockOptions
from .tokens import TokenGenerator, new_lock_token

__all__ = [
    "BusyLockError",
    "Clock",
    "ConsistencyError",
    "ConsistencyLevel",
    "DistributedRowLock",
    "LockCell",
    "LockCleanupError",
    "LockError",
    "LockOptions",
    "ManualClock",
    "RowLockManager",
    "StaleLockError",
    "StorageError",
    "SystemClock",
    "TokenGenerator",
    "new_lock_token",
]
