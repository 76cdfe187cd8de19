from __future__ import annotations

import asyncio
import json

import pytest

from conftest import GatedStore
from rowlock.core.exceptions import BusyLockError, LockCleanupError, StaleLockError, StorageError
from rowlock.core.locks import RowLockManager
from rowlock.core.models import ConsistencyLevel, LockOptions
from rowlock.core.row_lock import PrefixRowLock
from rowlock.services.audit_logger import AuditLogger


TABLE = "accounts"
ROW = "row-1"
WINDOW = LockOptions().staleness_window_micros


def make_lock(store, clock, options=None, token="m", **kwargs) -> PrefixRowLock:
    return PrefixRowLock(store, TABLE, ROW, options, clock=clock, token_generator=lambda: token, **kwargs)


@pytest.mark.asyncio
async def test_acquire_without_contention(store, clock):
    lock = make_lock(store, clock)
    await lock.acquire()

    assert lock.lock_cell == "_LOCK_m"
    assert lock.locks_to_delete == ("_LOCK_m",)
    assert await lock.read_lock_cells() == {"_LOCK_m": clock.now_micros() + WINDOW}

    await lock.release()
    assert store.cells(TABLE, ROW) == {}
    assert lock.locks_to_delete == ()


@pytest.mark.asyncio
async def test_own_cell_never_reported_busy(store, clock):
    lock = make_lock(store, clock)
    await lock.acquire()
    for _ in range(3):
        clock.advance(seconds=30)
        await lock.verify()
    assert lock.locks_to_delete == ("_LOCK_m",)


@pytest.mark.asyncio
async def test_stale_cell_is_reclaimed(store, clock):
    await store.write(TABLE, ROW, "_LOCK_0old", clock.now_micros() - 1)
    lock = make_lock(store, clock)
    await lock.acquire()

    assert lock.locks_to_delete == ("_LOCK_m", "_LOCK_0old")
    await lock.release()
    assert store.cells(TABLE, ROW) == {}


@pytest.mark.asyncio
async def test_stale_cell_fails_and_is_kept(store, clock):
    stale_value = clock.now_micros() - 1
    await store.write(TABLE, ROW, "_LOCK_0old", stale_value)
    lock = make_lock(store, clock, LockOptions().with_fail_on_stale_lock())

    with pytest.raises(StaleLockError) as info:
        await lock.acquire()

    assert info.value.row_key == ROW
    assert info.value.cell == "_LOCK_0old"
    assert store.cells(TABLE, ROW) == {"_LOCK_0old": stale_value}
    assert lock.locks_to_delete == ()


@pytest.mark.asyncio
async def test_busy_row_keeps_stale_cells_queued(store, clock):
    now = clock.now_micros()
    await store.write(TABLE, ROW, "_LOCK_0old", now - 1)
    await store.write(TABLE, ROW, "_LOCK_zlive", now + 1_000)
    lock = make_lock(store, clock)

    with pytest.raises(BusyLockError) as info:
        await lock.acquire()

    assert info.value.cell == "_LOCK_zlive"
    # The stale cell was queued before the busy one was seen, so cleanup removed it too.
    assert store.cells(TABLE, ROW) == {"_LOCK_zlive": now + 1_000}


@pytest.mark.asyncio
async def test_duel_fails_both_attempts(clock):
    store = GatedStore(writers=2, clock=clock)
    first = make_lock(store, clock, token="a")
    second = make_lock(store, clock, token="b")

    results = await asyncio.gather(first.acquire(), second.acquire(), return_exceptions=True)

    assert all(isinstance(result, BusyLockError) for result in results)
    assert results[0].cell == "_LOCK_b"
    assert results[1].cell == "_LOCK_a"
    assert store.cells(TABLE, ROW) == {}


@pytest.mark.asyncio
async def test_release_expired_vs_release_all(store, clock):
    now = clock.now_micros()
    cells = {"_LOCK_A": now - 100, "_LOCK_B": now + 100, "_LOCK_C": 0}
    for name, value in cells.items():
        await store.write(TABLE, ROW, name, value)
    lock = make_lock(store, clock)

    assert await lock.release_expired_locks() == cells
    assert store.cells(TABLE, ROW) == {"_LOCK_B": now + 100, "_LOCK_C": 0}

    snapshot = await lock.release_all_locks()
    assert snapshot == {"_LOCK_B": now + 100, "_LOCK_C": 0}
    assert store.cells(TABLE, ROW) == {}


@pytest.mark.asyncio
async def test_release_locks_leaves_data_cells(store, clock):
    await store.write(TABLE, ROW, "balance", 42)
    await store.write(TABLE, ROW, "_LOCK_A", 0)
    lock = make_lock(store, clock)

    await lock.release_locks(force=True)

    assert store.cells(TABLE, ROW) == {"balance": 42}


@pytest.mark.asyncio
async def test_second_release_is_noop(store, clock):
    lock = make_lock(store, clock)
    await lock.acquire()
    await lock.release()
    batches = len(store.batches)

    await lock.release()
    assert len(store.batches) == batches


@pytest.mark.asyncio
async def test_failed_read_cleans_up_own_cell(store, clock):
    store.fail_reads = True
    lock = make_lock(store, clock)

    with pytest.raises(StorageError, match="read timed out"):
        await lock.acquire()

    assert store.cells(TABLE, ROW) == {}


@pytest.mark.asyncio
async def test_failed_cleanup_chains_both_errors(store, clock):
    store.fail_reads = True
    store.fail_deletes = True
    lock = make_lock(store, clock)

    with pytest.raises(LockCleanupError) as info:
        await lock.acquire()

    assert str(info.value.original) == "read timed out"
    assert str(info.value.cleanup_error) == "delete timed out"
    assert info.value.__cause__ is info.value.cleanup_error
    # Pending deletes survive a failed release so it can be retried.
    assert lock.locks_to_delete == ("_LOCK_m",)


@pytest.mark.asyncio
async def test_timed_out_acquire_removes_own_cell(store, clock):
    store.read_delay = 1.0
    lock = make_lock(store, clock)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(lock.acquire(), timeout=0.05)

    assert store.cells(TABLE, ROW) == {}
    assert lock.locks_to_delete == ()


@pytest.mark.asyncio
async def test_stale_queue_reflects_latest_verification(store, clock):
    await store.write(TABLE, ROW, "_LOCK_0old", clock.now_micros() - 1)
    lock = make_lock(store, clock)
    await lock.acquire()
    assert "_LOCK_0old" in lock.locks_to_delete

    await store.batch_delete(TABLE, ROW, ["_LOCK_0old"])
    await lock.verify()
    assert lock.locks_to_delete == ("_LOCK_m",)


@pytest.mark.asyncio
async def test_permanent_marker_never_goes_stale(store, clock):
    holder = make_lock(store, clock, token="a")
    batch = store.batch()
    holder.fill_lock_mutation(batch, None)
    await batch.execute()
    assert store.cells(TABLE, ROW) == {"_LOCK_a": 0}

    clock.advance(seconds=10 * 24 * 3600)
    with pytest.raises(BusyLockError):
        await make_lock(store, clock, token="b").acquire()

    await holder.release_expired_locks()
    assert store.cells(TABLE, ROW) == {}  # holder's own pending delete ran first

    await store.write(TABLE, ROW, "_LOCK_c", 0)
    await make_lock(store, clock, token="d").release_expired_locks()
    assert store.cells(TABLE, ROW) == {"_LOCK_c": 0}


@pytest.mark.asyncio
async def test_release_mutation_bundles_with_data_write(store, clock):
    lock = make_lock(store, clock)
    await lock.acquire()

    batch = store.batch(lock.consistency_level)
    batch.with_row(TABLE, ROW).put_cell("balance", 7)
    lock.fill_release_mutation(batch)
    assert lock.locks_to_delete == ()

    await batch.execute()
    assert store.cells(TABLE, ROW) == {"balance": 7}


@pytest.mark.asyncio
async def test_ttl_and_consistency_are_passed_to_store(store, clock):
    options = LockOptions().with_ttl(30).with_consistency_level(ConsistencyLevel.LOCAL_QUORUM)
    lock = make_lock(store, clock, options)
    await lock.acquire()

    write = store.batches[0]
    assert write.consistency is ConsistencyLevel.LOCAL_QUORUM
    assert write.rows[0].operations[0].ttl == 30

    clock.advance(seconds=31)
    assert await lock.read_lock_cells() == {}


@pytest.mark.asyncio
async def test_context_manager_holds_and_releases(store, clock):
    async with make_lock(store, clock) as held:
        assert store.cells(TABLE, ROW) == {held.lock_cell: clock.now_micros() + WINDOW}
    assert store.cells(TABLE, ROW) == {}


@pytest.mark.asyncio
async def test_explicit_lock_cell(store, clock):
    lock = PrefixRowLock(store, TABLE, ROW, LockOptions().with_lock_cell("_LOCK_worker-7"), clock=clock)
    await lock.acquire()
    assert store.cells(TABLE, ROW) == {"_LOCK_worker-7": clock.now_micros() + WINDOW}


@pytest.mark.asyncio
async def test_custom_prefix_ignores_other_lock_families(store, clock):
    await store.write(TABLE, ROW, "_LOCK_other", clock.now_micros() + 1_000)
    lock = make_lock(store, clock, LockOptions().with_prefix("_EDIT_"))
    await lock.acquire()
    assert await lock.read_lock_cells() == {"_EDIT_m": clock.now_micros() + WINDOW}


@pytest.mark.asyncio
async def test_manager_hands_out_fresh_attempts(store):
    manager = RowLockManager(store, TABLE)
    first = manager.lock(ROW)
    second = manager.lock(ROW)
    assert first.lock_cell != second.lock_cell
    assert first.store is store and first.table == TABLE

    await first.acquire()
    with pytest.raises(BusyLockError):
        await second.acquire()
    await first.release()
    await second.acquire()
    await second.release()


@pytest.mark.asyncio
async def test_maintenance_release_is_audited(store, clock, tmp_path):
    audit = AuditLogger(tmp_path / "audit.log")
    await store.write(TABLE, ROW, "_LOCK_A", clock.now_micros() + 100)
    lock = make_lock(store, clock, audit_logger=audit)

    await lock.release_all_locks()

    record = json.loads(audit.path.read_text().splitlines()[0])
    assert record["event"] == "locks.released_all"
    assert record["row_key"] == ROW
    assert record["payload"]["deleted"] == ["_LOCK_A"]
