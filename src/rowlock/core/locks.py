"""Abstract interfaces for distributed row locks."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Hashable, Optional

from .models import LockOptions

if TYPE_CHECKING:
    from rowlock.core.row_lock import PrefixRowLock
    from rowlock.services.audit_logger import AuditLogger
    from rowlock.storage.base import RowStore


class DistributedRowLock(abc.ABC):
    """A lock on one row; ``async with`` acquires on entry and releases on exit."""

    @abc.abstractmethod
    async def acquire(self) -> None:  # pragma: no cover - interface
        """Take the lock or raise; nothing is held after an exception."""
        raise NotImplementedError

    @abc.abstractmethod
    async def release(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def __aenter__(self) -> "DistributedRowLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class RowLockManager:
    """Hands out fresh lock attempts for rows of one table."""

    def __init__(
        self,
        store: "RowStore",
        table: str,
        options: Optional[LockOptions] = None,
        *,
        audit_logger: Optional["AuditLogger"] = None,
    ) -> None:
        self.store = store
        self.table = table
        self.options = options or LockOptions()
        self.audit_logger = audit_logger

    def lock(self, row_key: Hashable, options: Optional[LockOptions] = None) -> "PrefixRowLock":
        from rowlock.core.row_lock import PrefixRowLock

        return PrefixRowLock(
            self.store,
            self.table,
            row_key,
            options or self.options,
            audit_logger=self.audit_logger,
        )
