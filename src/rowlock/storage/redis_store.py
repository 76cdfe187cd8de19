"""Redis-backed row store.

Each cell lives in its own string key (so storage TTL maps onto ``EX``) and its
name is indexed in a per-row sorted set with score 0, which ``ZRANGEBYLEX``
scans in name order. The index expires with its longest-lived cell and is
persisted while it holds a cell without TTL.

A mutation batch is one Lua script, so it applies atomically. Consistency levels
map to a minimum number of replica acknowledgements. ``WAIT`` only counts the
writes of its own connection, so it is sent behind the script in the same
pipeline.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Hashable, List, Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from rowlock.core.exceptions import ConsistencyError, StorageError
from rowlock.core.models import ConsistencyLevel, LockCell
from rowlock.utils.logging import get_logger

from .base import CellPut, MutationBatch, RowStore


logger = get_logger("RedisRowStore")

# KEYS come in (cell key, index key) pairs, ARGV in (kind, name, value, ttl) quads.
_APPLY_LUA = """
for i = 1, #KEYS, 2 do
  local cell, index = KEYS[i], KEYS[i + 1]
  local base = (i - 1) * 2
  local kind, name, value = ARGV[base + 1], ARGV[base + 2], ARGV[base + 3]
  local ttl = tonumber(ARGV[base + 4])
  if kind == "put" then
    local existed = redis.call("exists", index)
    if ttl > 0 then
      redis.call("set", cell, value, "EX", ttl)
    else
      redis.call("set", cell, value)
    end
    redis.call("zadd", index, 0, name)
    if ttl > 0 then
      local current = redis.call("ttl", index)
      if existed == 0 or (current >= 0 and current < ttl) then
        redis.call("expire", index, ttl)
      end
    else
      redis.call("persist", index)
    end
  else
    redis.call("del", cell)
    redis.call("zrem", index, name)
  end
end
return #KEYS / 2
"""


def _escape(part: object) -> str:
    return str(part).replace("\\", "\\\\").replace(":", "\\:")


class RedisRowStore(RowStore):
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        client: Optional[Redis] = None,
        namespace: str = "rowlock",
        replica_acks: Optional[Mapping[ConsistencyLevel, int]] = None,
        wait_timeout_ms: int = 1000,
    ) -> None:
        self._redis = client or Redis.from_url(
            url or os.getenv("REDIS_URL", "redis://localhost:6379/0"), decode_responses=True
        )
        self._namespace = namespace
        self._replica_acks: Dict[ConsistencyLevel, int] = dict(replica_acks or {})
        self._wait_timeout_ms = wait_timeout_ms

    def _row_key(self, table: str, row_key: Hashable) -> str:
        return f"{_escape(self._namespace)}:{_escape(table)}:{_escape(row_key)}"

    def _index_key(self, table: str, row_key: Hashable) -> str:
        return f"{self._row_key(table, row_key)}:idx"

    def _cell_key(self, table: str, row_key: Hashable, name: str) -> str:
        return f"{self._row_key(table, row_key)}:cell:{_escape(name)}"

    async def range_read(
        self,
        table: str,
        row_key: Hashable,
        start: str,
        end: str,
        *,
        consistency: ConsistencyLevel = ConsistencyLevel.QUORUM,
    ) -> List[LockCell]:
        index = self._index_key(table, row_key)
        try:
            names = await self._redis.zrangebylex(index, f"[{start}", f"[{end}")
            if not names:
                return []
            values = await self._redis.mget([self._cell_key(table, row_key, _text(name)) for name in names])
            expired = [name for name, value in zip(names, values) if value is None]
            if expired:
                # Cell keys expired through TTL; drop their index entries.
                await self._redis.zrem(index, *expired)
        except RedisError as exc:
            raise StorageError(f"Range read failed for row {row_key!r}: {exc}") from exc
        return [LockCell(_text(name), int(value)) for name, value in zip(names, values) if value is not None]

    async def apply(self, batch: MutationBatch) -> None:
        keys: List[str] = []
        args: List[Any] = []
        for mutation in batch.rows:
            index = self._index_key(mutation.table, mutation.row_key)
            for op in mutation.operations:
                keys += [self._cell_key(mutation.table, mutation.row_key, op.name), index]
                if isinstance(op, CellPut):
                    args += ["put", op.name, op.value, op.ttl or 0]
                else:
                    args += ["del", op.name, 0, 0]

        required = self._replica_acks.get(batch.consistency, 0)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.eval(_APPLY_LUA, len(keys), *keys, *args)
                if required > 0:
                    pipe.execute_command("WAIT", required, self._wait_timeout_ms)
                results = await pipe.execute()
        except RedisError as exc:
            raise StorageError(f"Mutation batch failed: {exc}") from exc

        if required > 0:
            acknowledged = int(results[-1])
            if acknowledged < required:
                level = batch.consistency.value
                logger.warning("Only %d of %d replicas acknowledged (%s)", acknowledged, required, level)
                raise ConsistencyError(level, required, acknowledged)

    async def close(self) -> None:
        await self._redis.aclose()


def _text(value: object) -> str:
    return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)
