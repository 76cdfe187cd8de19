"""Debit an account under a row lock, releasing the lock in the same batch as the write.

Usage:
    python examples/account_transfer.py [config.yaml]
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from rowlock.core.retry import acquire_with_retry
from rowlock.core.settings import RowLockSettings, create_lock_manager
from rowlock.utils.logging import get_logger


logger = get_logger("AccountTransfer")


async def debit(manager, account: str, amount: int) -> None:
    lock = await acquire_with_retry(lambda: manager.lock(account), attempts=8)
    try:
        balance = await manager.store.range_read(manager.table, account, "balance", "balance")
        current = balance[0].value if balance else 100
        batch = manager.store.batch(lock.consistency_level)
        batch.with_row(manager.table, account).put_cell("balance", current - amount)
        lock.fill_release_mutation(batch)
        await batch.execute()
        logger.info("Debited %d from %s, balance now %d", amount, account, current - amount)
    finally:
        await lock.release()


async def main() -> None:
    settings = RowLockSettings.from_file(Path(sys.argv[1])) if len(sys.argv) > 1 else RowLockSettings()
    manager = create_lock_manager(settings)
    try:
        await asyncio.gather(*(debit(manager, "acct-1", 10) for _ in range(5)))
    finally:
        await manager.store.close()


if __name__ == "__main__":
    asyncio.run(main())
