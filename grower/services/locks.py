"""Per-entity lock registry with automatic cleanup of idle locks."""
from __future__ import annotations

import asyncio
import time


def entity_key(kind: str, entity_id: int) -> str:
    return f"{kind}:{entity_id}"


class EntityLockManager:
    """Hands out one ``asyncio.Lock`` per entity key (``"duello:42"``).

    Every read-validate-write on a fight or duello runs under its lock so two
    taps on the same button cannot both resolve it. Locks idle for longer
    than the cleanup threshold are dropped.
    """

    def __init__(self, cleanup_threshold_sec: float = 3600.0) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_used: dict[str, float] = {}
        self._cleanup_threshold = cleanup_threshold_sec
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = 600.0

    def get_lock(self, key: str) -> asyncio.Lock:
        now = time.monotonic()
        if now - self._last_cleanup >= self._cleanup_interval:
            self._cleanup_old_locks(now)
            self._last_cleanup = now

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._last_used[key] = now
        return lock

    def for_entity(self, kind: str, entity_id: int) -> asyncio.Lock:
        return self.get_lock(entity_key(kind, entity_id))

    def _cleanup_old_locks(self, now: float) -> None:
        stale = [
            key for key, last_used in self._last_used.items()
            if now - last_used >= self._cleanup_threshold
        ]
        for key in stale:
            lock = self._locks.get(key)
            # A held lock still guards an in-flight operation
            if lock is not None and not lock.locked():
                self._locks.pop(key, None)
                self._last_used.pop(key, None)

    def get_stats(self) -> dict[str, int]:
        return {
            "active_locks": len(self._locks),
            "held_locks": sum(1 for lock in self._locks.values() if lock.locked()),
        }
