"""Named asyncio locks."""

from __future__ import annotations

import asyncio


class KeyedLocks:
    """Hands out one asyncio.Lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
