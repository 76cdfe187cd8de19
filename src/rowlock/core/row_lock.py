"""Row lock built from prefixed lock cells.

Algorithm:

1. Write a cell named ``<prefix><token>`` whose value is the time after which
   the cell counts as stale (or ``0`` for a permanent marker).
2. Read back every cell under ``<prefix>`` in the row.
3. Only our own cell may be live. Expired cells are queued for deletion (or
   fail the attempt when configured), any other live cell means the row is
   busy.

Every failure deletes whatever the attempt may have written before the error
propagates. Two attempts that write before either reads both see each other
and both fail; retrying is the caller's business.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, Hashable, Optional, Tuple

from rowlock.services.audit_logger import AuditLogger
from rowlock.storage.base import MutationBatch, RowStore
from rowlock.utils.logging import get_logger

from .clock import Clock, SystemClock
from .exceptions import BusyLockError, LockCleanupError, StaleLockError
from .locks import DistributedRowLock
from .models import ConsistencyLevel, LockOptions
from .tokens import new_lock_token


logger = get_logger("PrefixRowLock")


class PrefixRowLock(DistributedRowLock):
    """Lock on a single row, stored as cells sharing a name prefix."""

    def __init__(
        self,
        store: RowStore,
        table: str,
        row_key: Hashable,
        options: Optional[LockOptions] = None,
        *,
        clock: Optional[Clock] = None,
        token_generator: Optional[Callable[[], str]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._table = table
        self._row_key = row_key
        self._options = options or LockOptions()
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger
        generate = token_generator or new_lock_token
        self._lock_cell = self._options.lock_cell or f"{self._options.prefix}{generate()}"
        # Ordered set of cell names to delete on release.
        self._locks_to_delete: Dict[str, None] = {}

    @property
    def store(self) -> RowStore:
        return self._store

    @property
    def table(self) -> str:
        return self._table

    @property
    def row_key(self) -> Hashable:
        return self._row_key

    @property
    def options(self) -> LockOptions:
        return self._options

    @property
    def consistency_level(self) -> ConsistencyLevel:
        return self._options.consistency_level

    @property
    def lock_cell(self) -> str:
        return self._lock_cell

    @property
    def locks_to_delete(self) -> Tuple[str, ...]:
        return tuple(self._locks_to_delete)

    async def acquire(self) -> None:
        try:
            now = self._clock.now_micros()
            await self._write_lock_cell(now)
            await self.verify(now)
        except Exception as exc:
            try:
                await self.release()
            except Exception as cleanup_exc:
                logger.warning(
                    "Cleanup after failed acquire on %s/%r failed: %s", self._table, self._row_key, cleanup_exc
                )
                raise LockCleanupError(exc, cleanup_exc) from cleanup_exc
            raise
        except asyncio.CancelledError:
            # A timed-out caller must not leave its cell blocking the row.
            try:
                await asyncio.shield(self.release())
            except Exception as cleanup_exc:
                logger.warning(
                    "Cleanup after cancelled acquire on %s/%r failed: %s", self._table, self._row_key, cleanup_exc
                )
            raise
        logger.debug("Acquired %s on %s/%r", self._lock_cell, self._table, self._row_key)

    async def _write_lock_cell(self, now: int) -> str:
        batch = self._store.batch(self.consistency_level)
        self.fill_lock_mutation(batch, now, self._options.ttl)
        await batch.execute()
        return self._lock_cell

    async def verify(self, now: Optional[int] = None) -> None:
        """Read the lock cells back and check that only ours is live.

        Raises ``StaleLockError`` on an expired cell when ``fail_on_stale_lock``
        is set (the cell is left in place), otherwise queues it for deletion.
        Raises ``BusyLockError`` on any live cell that is not ours.
        """
        if now is None:
            now = self._clock.now_micros()
        cells = await self.read_lock_cells()

        self._locks_to_delete = {name: None for name in self._locks_to_delete if name == self._lock_cell}
        for name, expires in cells.items():
            if expires != 0 and now > expires:
                if self._options.fail_on_stale_lock:
                    logger.warning("Stale lock cell %s on %s/%r", name, self._table, self._row_key)
                    raise StaleLockError(self._row_key, name)
                self._locks_to_delete[name] = None
            elif name != self._lock_cell:
                logger.debug("Row %s/%r is busy, held by %s", self._table, self._row_key, name)
                raise BusyLockError(name)

    async def release(self) -> None:
        """Delete our cell and any stale cells found while verifying."""
        if not self._locks_to_delete:
            return
        names = list(self._locks_to_delete)
        await self._store.batch_delete(self._table, self._row_key, names, consistency=self.consistency_level)
        for name in names:
            self._locks_to_delete.pop(name, None)
        logger.debug("Released %s on %s/%r", ", ".join(names), self._table, self._row_key)

    def fill_release_mutation(self, batch: MutationBatch) -> None:
        """Move the pending deletes into an externally executed batch."""
        row = batch.with_row(self._table, self._row_key)
        for name in self._locks_to_delete:
            row.delete_cell(name)
        self._locks_to_delete.clear()

    def fill_lock_mutation(self, batch: MutationBatch, time: Optional[int], ttl: Optional[int] = None) -> None:
        """Add our lock cell to an externally executed batch.

        ``time=None`` writes a permanent marker (value ``0``) that never goes
        stale. The caller must make sure the lock is released afterwards.
        """
        self._locks_to_delete[self._lock_cell] = None
        value = 0 if time is None else time + self._options.staleness_window_micros
        batch.with_row(self._table, self._row_key).put_cell(self._lock_cell, value, ttl)

    async def read_lock_cells(self) -> Dict[str, int]:
        """Return every lock cell in the row mapped to its expiration time."""
        prefix = self._options.prefix
        cells = await self._store.range_read(
            self._table,
            self._row_key,
            prefix + "\u0000",
            prefix + "\uffff",
            consistency=self.consistency_level,
        )
        return {cell.name: cell.value for cell in cells}

    async def release_all_locks(self) -> Dict[str, int]:
        """Delete every lock cell, including ones held by running operations."""
        return await self.release_locks(True)

    async def release_expired_locks(self) -> Dict[str, int]:
        return await self.release_locks(False)

    async def release_locks(self, force: bool) -> Dict[str, int]:
        """Delete expired lock cells, or all of them with ``force=True``.

        Returns the lock cells as they were before anything was deleted.
        """
        snapshot = await self.read_lock_cells()
        await self.release()

        now = self._clock.now_micros()
        doomed = [name for name, expires in snapshot.items() if force or 0 < expires < now]
        if doomed:
            await self._store.batch_delete(self._table, self._row_key, doomed, consistency=self.consistency_level)
        logger.info(
            "Released %d of %d lock cells on %s/%r (force=%s)",
            len(doomed),
            len(snapshot),
            self._table,
            self._row_key,
            force,
        )
        if self._audit_logger is not None:
            await self._audit_logger.log(
                event="locks.released_all" if force else "locks.released_expired",
                table=self._table,
                row_key=self._row_key,
                payload={"snapshot": snapshot, "deleted": doomed},
            )
        return snapshot
