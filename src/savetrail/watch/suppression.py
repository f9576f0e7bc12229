"""
Short-lived tokens telling the watcher to skip a path.

Set right before savetrail itself writes a file (rollback, restore) and
consumed by the first change event for that path, or dropped on expiry.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable

DEFAULT_TTL = 5.0


class SuppressionRegistry:
    """Map of path to expiry time."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._tokens: dict[str, float] = {}
        self._lock = threading.Lock()

    def suppress(self, path: str, ttl: float = DEFAULT_TTL) -> None:
        with self._lock:
            self._tokens[path] = self._clock() + ttl

    def release(self, path: str) -> None:
        with self._lock:
            self._tokens.pop(path, None)

    def is_suppressed(self, path: str) -> bool:
        with self._lock:
            return self._live(path)

    def consume(self, path: str) -> bool:
        """True once per token while it is unexpired."""
        with self._lock:
            live = self._live(path)
            self._tokens.pop(path, None)
            return live

    def _live(self, path: str) -> bool:
        expires = self._tokens.get(path)
        if expires is None:
            return False
        if expires <= self._clock():
            del self._tokens[path]
            return False
        return True

    @contextmanager
    def suppressing(self, path: str, ttl: float = DEFAULT_TTL):
        """Suppress path for the duration of a write; released if the write fails."""
        self.suppress(path, ttl)
        try:
            yield
        except Exception:
            self.release(path)
            raise

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
