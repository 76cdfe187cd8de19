"""Caller-side retry for busy rows.

Locks never retry on their own. This helper takes a fresh attempt (new token)
per try and backs off with jitter so duelling callers drift apart.
"""

from __future__ import annotations

from typing import Callable

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from rowlock.utils.logging import get_logger

from .exceptions import BusyLockError
from .row_lock import PrefixRowLock


logger = get_logger("LockRetry")


async def acquire_with_retry(
    factory: Callable[[], PrefixRowLock],
    *,
    attempts: int = 5,
    initial_wait: float = 0.05,
    max_wait: float = 2.0,
    jitter: float = 0.1,
) -> PrefixRowLock:
    """Acquire a lock from ``factory``, retrying only on ``BusyLockError``.

    The last ``BusyLockError`` is re-raised once ``attempts`` are used up; any
    other error propagates immediately.
    """

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=initial_wait, max=max_wait, jitter=jitter),
        retry=retry_if_exception_type(BusyLockError),
        reraise=True,
    )
    async def _attempt() -> PrefixRowLock:
        lock = factory()
        try:
            await lock.acquire()
        except BusyLockError as exc:
            logger.debug("Row %s/%r busy (%s), backing off", lock.table, lock.row_key, exc.cell)
            raise
        return lock

    return await _attempt()
