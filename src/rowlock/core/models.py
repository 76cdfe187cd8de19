"""Configuration and value types shared by locks and stores."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_LOCK_PREFIX = "_LOCK_"
DEFAULT_EXPIRE_AFTER = dt.timedelta(minutes=60)

_TIME_UNITS = {"microseconds", "milliseconds", "seconds", "minutes", "hours", "days"}


class ConsistencyLevel(str, Enum):
    """Replica agreement requested for a storage operation."""

    ANY = "ANY"
    ONE = "ONE"
    LOCAL_ONE = "LOCAL_ONE"
    TWO = "TWO"
    THREE = "THREE"
    QUORUM = "QUORUM"
    LOCAL_QUORUM = "LOCAL_QUORUM"
    EACH_QUORUM = "EACH_QUORUM"
    ALL = "ALL"


class LockCell(NamedTuple):
    name: str
    value: int


class LockOptions(BaseModel):
    """Immutable lock policy.

    The ``with_*`` helpers return validated copies, so an options value handed
    to a lock can never change underneath an in-flight acquisition.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(default=DEFAULT_LOCK_PREFIX, min_length=1)
    lock_cell: Optional[str] = None
    consistency_level: ConsistencyLevel = ConsistencyLevel.QUORUM
    fail_on_stale_lock: bool = False
    expire_after: dt.timedelta = DEFAULT_EXPIRE_AFTER
    ttl: Optional[int] = Field(default=None, gt=0)

    @field_validator("expire_after")
    @classmethod
    def _positive_window(cls, value: dt.timedelta) -> dt.timedelta:
        if value <= dt.timedelta(0):
            raise ValueError("expire_after must be positive")
        return value

    @model_validator(mode="after")
    def _cell_under_prefix(self) -> "LockOptions":
        # A cell outside the prefix range would never be seen by the read-back.
        if self.lock_cell is not None and (
            self.lock_cell == self.prefix or not self.lock_cell.startswith(self.prefix)
        ):
            raise ValueError(f"lock_cell {self.lock_cell!r} must extend prefix {self.prefix!r}")
        return self

    @property
    def staleness_window_micros(self) -> int:
        return self.expire_after // dt.timedelta(microseconds=1)

    def _replace(self, **changes: Any) -> "LockOptions":
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def with_consistency_level(self, level: ConsistencyLevel | str) -> "LockOptions":
        return self._replace(consistency_level=level)

    def with_prefix(self, prefix: str) -> "LockOptions":
        """Change the prefix; an explicit lock cell is dropped so a new token is generated."""
        return self._replace(prefix=prefix, lock_cell=None)

    def with_lock_cell(self, cell: Optional[str]) -> "LockOptions":
        return self._replace(lock_cell=cell)

    def with_fail_on_stale_lock(self, fail: bool = True) -> "LockOptions":
        return self._replace(fail_on_stale_lock=fail)

    def expire_lock_after(self, value: float, unit: str = "seconds") -> "LockOptions":
        unit = unit.lower()
        if not unit.endswith("s"):
            unit += "s"
        if unit not in _TIME_UNITS:
            raise ValueError(f"Unsupported time unit: {unit}")
        return self._replace(expire_after=dt.timedelta(**{unit: value}))

    def with_ttl(self, ttl: Optional[int]) -> "LockOptions":
        return self._replace(ttl=ttl)
