"""Structured audit logger writing JSON Lines for administrative lock releases."""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import os
from pathlib import Path
from typing import Any, Dict, Hashable, Optional


class AuditLogger:
    """Persist an audit trail of forced and expired lock releases."""

    def __init__(self, path: Optional[Path] = None) -> None:
        target = path or Path(os.getenv("ROWLOCK_AUDIT_LOG", "artifacts/rowlock-audit.log"))
        target.parent.mkdir(parents=True, exist_ok=True)
        self._path = target
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def log(self, *, event: str, table: str, row_key: Hashable, payload: Dict[str, Any]) -> None:
        record = {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "event": event,
            "table": table,
            "row_key": str(row_key),
            "payload": payload,
        }
        async with self._lock:
            await asyncio.to_thread(self._append_line, record)

    def _append_line(self, record: Dict[str, Any]) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=True))
            fh.write("\n")
