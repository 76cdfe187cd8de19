"""Abstract interface for wide-row stores with ordered cell scans."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Optional, Tuple, Union

from rowlock.core.models import ConsistencyLevel, LockCell


@dataclass(slots=True)
class CellPut:
    name: str
    value: int
    ttl: Optional[int] = None


@dataclass(slots=True)
class CellDelete:
    name: str


CellOperation = Union[CellPut, CellDelete]


@dataclass(slots=True)
class RowMutation:
    """Ordered puts and deletes against one row."""

    table: str
    row_key: Hashable
    operations: List[CellOperation] = field(default_factory=list)

    def put_cell(self, name: str, value: int, ttl: Optional[int] = None) -> "RowMutation":
        self.operations.append(CellPut(name=name, value=int(value), ttl=ttl))
        return self

    def delete_cell(self, name: str) -> "RowMutation":
        self.operations.append(CellDelete(name=name))
        return self


class MutationBatch:
    """Accumulates mutations across rows and applies them in one call."""

    def __init__(self, store: "RowStore", consistency: ConsistencyLevel) -> None:
        self.store = store
        self.consistency = consistency
        self._rows: Dict[Tuple[str, Hashable], RowMutation] = {}

    def with_row(self, table: str, row_key: Hashable) -> RowMutation:
        slot = (table, row_key)
        if slot not in self._rows:
            self._rows[slot] = RowMutation(table=table, row_key=row_key)
        return self._rows[slot]

    @property
    def rows(self) -> List[RowMutation]:
        return [row for row in self._rows.values() if row.operations]

    def is_empty(self) -> bool:
        return not self.rows

    async def execute(self) -> None:
        if self.is_empty():
            return
        await self.store.apply(self)


class RowStore(abc.ABC):
    """Storage collaborator: atomic cell writes, ordered range reads, batched deletes."""

    def batch(self, consistency: ConsistencyLevel = ConsistencyLevel.QUORUM) -> MutationBatch:
        return MutationBatch(self, consistency)

    async def write(
        self,
        table: str,
        row_key: Hashable,
        cell: str,
        value: int,
        *,
        ttl: Optional[int] = None,
        consistency: ConsistencyLevel = ConsistencyLevel.QUORUM,
    ) -> None:
        batch = self.batch(consistency)
        batch.with_row(table, row_key).put_cell(cell, value, ttl)
        await batch.execute()

    async def batch_delete(
        self,
        table: str,
        row_key: Hashable,
        cells: Iterable[str],
        *,
        consistency: ConsistencyLevel = ConsistencyLevel.QUORUM,
    ) -> None:
        batch = self.batch(consistency)
        row = batch.with_row(table, row_key)
        for cell in cells:
            row.delete_cell(cell)
        await batch.execute()

    @abc.abstractmethod
    async def range_read(
        self,
        table: str,
        row_key: Hashable,
        start: str,
        end: str,
        *,
        consistency: ConsistencyLevel = ConsistencyLevel.QUORUM,
    ) -> List[LockCell]:  # pragma: no cover - interface
        """Return cells with ``start <= name <= end`` in name order."""
        raise NotImplementedError

    @abc.abstractmethod
    async def apply(self, batch: MutationBatch) -> None:  # pragma: no cover - interface
        """Apply every row mutation of ``batch``, atomically per row where supported."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
