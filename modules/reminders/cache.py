"""Short-lived in-process caches for per-user decision inputs."""

from __future__ import annotations

import time
from typing import Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

V = TypeVar("V")

# Default TTLs in seconds
DEFAULT_TTLS: dict[str, int] = {
    "features": 300,     # 5 minutes
    "fatigue": 300,      # 5 minutes
    "preferences": 300,  # 5 minutes
}


class TTLCache(Generic[V]):
    """Dict with per-entry expiry.

    Reads and writes are synchronous, so a lookup and the store that
    follows a miss cannot be split by another coroutine.
    """

    def __init__(self, name: str, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else DEFAULT_TTLS.get(name, 300)
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        logger.debug("cache_hit", cache=self.name, key=key)
        return value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        self._entries[key] = (self._clock() + (ttl if ttl is not None else self.ttl_seconds), value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def clear_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
