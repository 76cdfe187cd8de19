"""Unique, time-ordered lock tokens.

A token is ``<micros:14 hex><node:12 hex><random:16 hex>``. The microsecond
part never repeats or goes backwards inside one generator, the node part tells
hosts apart and the random part separates processes sharing a host.
"""

from __future__ import annotations

import secrets
import threading
import uuid
from typing import Optional

from .clock import Clock, SystemClock


class TokenGenerator:
    def __init__(self, clock: Optional[Clock] = None, *, node: Optional[int] = None) -> None:
        self._clock = clock or SystemClock()
        self._node = (uuid.getnode() if node is None else node) & 0xFFFFFFFFFFFF
        self._last_micros = 0
        self._mutex = threading.Lock()

    def _next_micros(self) -> int:
        with self._mutex:
            micros = self._clock.now_micros()
            if micros <= self._last_micros:
                micros = self._last_micros + 1
            self._last_micros = micros
            return micros

    def __call__(self) -> str:
        micros = self._next_micros()
        return f"{micros:014x}{self._node:012x}{secrets.token_hex(8)}"


_default_generator = TokenGenerator()


def new_lock_token() -> str:
    """Return a fresh token from the process-wide generator."""
    return _default_generator()
