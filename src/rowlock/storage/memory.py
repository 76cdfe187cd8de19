"""In-process row store, used for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from typing import Dict, Hashable, List, Optional, Tuple

from rowlock.core.clock import Clock, SystemClock
from rowlock.core.models import ConsistencyLevel, LockCell

from .base import CellPut, MutationBatch, RowStore


_Row = Dict[str, Tuple[int, Optional[int]]]


class InMemoryRowStore(RowStore):
    """Sorted cells per row with storage-side TTL; batches apply atomically."""

    def __init__(self, *, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._rows: Dict[Tuple[str, Hashable], _Row] = {}
        self._lock = asyncio.Lock()

    def _live_row(self, table: str, row_key: Hashable) -> _Row:
        row = self._rows.get((table, row_key), {})
        now = self._clock.now_micros()
        expired = [name for name, (_, deadline) in row.items() if deadline is not None and deadline <= now]
        for name in expired:
            del row[name]
        if not row:
            self._rows.pop((table, row_key), None)
        return row

    async def range_read(
        self,
        table: str,
        row_key: Hashable,
        start: str,
        end: str,
        *,
        consistency: ConsistencyLevel = ConsistencyLevel.QUORUM,
    ) -> List[LockCell]:
        async with self._lock:
            row = self._live_row(table, row_key)
            return [
                LockCell(name, value)
                for name, (value, _) in sorted(row.items())
                if start <= name <= end
            ]

    async def apply(self, batch: MutationBatch) -> None:
        async with self._lock:
            now = self._clock.now_micros()
            for mutation in batch.rows:
                row = self._live_row(mutation.table, mutation.row_key)
                self._rows[(mutation.table, mutation.row_key)] = row
                for op in mutation.operations:
                    if isinstance(op, CellPut):
                        deadline = now + op.ttl * 1_000_000 if op.ttl else None
                        row[op.name] = (op.value, deadline)
                    else:
                        row.pop(op.name, None)
                if not row:
                    del self._rows[(mutation.table, mutation.row_key)]

    def cells(self, table: str, row_key: Hashable) -> Dict[str, int]:
        """Snapshot of every live cell in a row, lock cells or not."""
        return {name: value for name, (value, _) in sorted(self._live_row(table, row_key).items())}
