"""Cooperative distributed row locks over prefix-scannable key/cell stores."""

from .core.exceptions import (
    BusyLockError,
    ConsistencyError,
    LockCleanupError,
    LockError,
    StaleLockError,
    StorageError,
)
from .core.locks import DistributedRowLock, RowLockManager
from .core.models import ConsistencyLevel, LockOptions
from .core.row_lock import PrefixRowLock

__all__ = [
    "__version__",
    "BusyLockError",
    "ConsistencyError",
    "ConsistencyLevel",
    "DistributedRowLock",
    "LockCleanupError",
    "LockError",
    "LockOptions",
    "PrefixRowLock",
    "RowLockManager",
    "StaleLockError",
    "StorageError",
]

__version__ = "0.1.0"
