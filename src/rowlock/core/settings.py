"""Runtime settings loader."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from rowlock.services.audit_logger import AuditLogger
from rowlock.storage.base import RowStore
from rowlock.storage.memory import InMemoryRowStore
from rowlock.storage.redis_store import RedisRowStore
from rowlock.utils.env import get_bool_env, get_first_env

from .locks import RowLockManager
from .models import ConsistencyLevel, LockOptions


class StoreSettings(BaseModel):
    backend: Literal["memory", "redis"] = "memory"
    url: Optional[str] = None  # falls back to ROWLOCK_REDIS_URL / REDIS_URL
    namespace: str = "rowlock"
    # Minimum replica acks collected with WAIT per consistency level (redis only).
    replica_acks: Dict[ConsistencyLevel, int] = Field(default_factory=dict)
    wait_timeout_ms: int = Field(default=1000, ge=0)


class RowLockSettings(BaseModel):
    table: str = "locks"
    store: StoreSettings = Field(default_factory=StoreSettings)
    lock: LockOptions = Field(default_factory=LockOptions)
    audit_log_path: Optional[Path] = None

    @classmethod
    def from_file(cls, path: Path) -> "RowLockSettings":
        data = yaml.safe_load(path.read_text()) or {}
        try:
            settings = cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid row lock settings: {exc}") from exc
        if settings.audit_log_path and not settings.audit_log_path.is_absolute():
            settings.audit_log_path = (path.parent / settings.audit_log_path).resolve()
        return settings.with_env_overrides()

    def with_env_overrides(self) -> "RowLockSettings":
        settings = self.model_copy(deep=True)
        if settings.store.url is None:
            settings.store.url = get_first_env("ROWLOCK_REDIS_URL", "REDIS_URL")
        if get_first_env("ROWLOCK_FAIL_ON_STALE") is not None:
            settings.lock = settings.lock.with_fail_on_stale_lock(get_bool_env("ROWLOCK_FAIL_ON_STALE"))
        return settings


def create_store(settings: StoreSettings) -> RowStore:
    if settings.backend == "redis":
        return RedisRowStore(
            settings.url,
            namespace=settings.namespace,
            replica_acks=settings.replica_acks,
            wait_timeout_ms=settings.wait_timeout_ms,
        )
    return InMemoryRowStore()


def create_lock_manager(settings: RowLockSettings, store: Optional[RowStore] = None) -> RowLockManager:
    audit_logger = AuditLogger(settings.audit_log_path) if settings.audit_log_path else None
    return RowLockManager(
        store or create_store(settings.store),
        settings.table,
        settings.lock,
        audit_logger=audit_logger,
    )
