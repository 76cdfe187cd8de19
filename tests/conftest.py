from __future__ import annotations

import asyncio
from typing import List

import pytest

from rowlock.core.clock import ManualClock
from rowlock.core.exceptions import StorageError
from rowlock.storage.base import CellPut, MutationBatch
from rowlock.storage.memory import InMemoryRowStore


class RecordingStore(InMemoryRowStore):
    """In-memory store that counts calls and can be told to fail."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.batches: List[MutationBatch] = []
        self.reads = 0
        self.fail_reads = False
        self.fail_deletes = False
        self.read_delay = 0.0

    async def range_read(self, *args, **kwargs):
        self.reads += 1
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.fail_reads:
            raise StorageError("read timed out")
        return await super().range_read(*args, **kwargs)

    async def apply(self, batch: MutationBatch) -> None:
        self.batches.append(batch)
        writes = any(isinstance(op, CellPut) for row in batch.rows for op in row.operations)
        if self.fail_deletes and not writes:
            raise StorageError("delete timed out")
        await super().apply(batch)


class GatedStore(InMemoryRowStore):
    """Holds every read back until ``writers`` lock cells have been written."""

    def __init__(self, writers: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self._writers = writers
        self._writes = 0
        self._all_written = asyncio.Event()

    async def apply(self, batch: MutationBatch) -> None:
        await super().apply(batch)
        if any(isinstance(op, CellPut) for row in batch.rows for op in row.operations):
            self._writes += 1
            if self._writes >= self._writers:
                self._all_written.set()

    async def range_read(self, *args, **kwargs):
        await self._all_written.wait()
        return await super().range_read(*args, **kwargs)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> RecordingStore:
    return RecordingStore(clock=clock)
