"""In-process key-value store with TTL expiry.

Notes:
- Per-process only: running multiple workers gives each worker its own
  cache and its own quota counters.
- Values are held by reference; nothing is serialized.
- Expired keys are dropped lazily on access and by a periodic sweep.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from governor.adapters.store.base import MISSING, AbstractKVStore

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float | None


class LocalKVStore(AbstractKVStore):
    """Dict-backed store with TTL support and optional LRU bound.

    Attributes:
        default_ttl_seconds: TTL applied when callers pass none.
        max_keys: Maximum number of live keys (None for unlimited).
    """

    backend_type = "local"

    def __init__(
        self,
        *,
        default_ttl_seconds: int = 600,
        max_keys: int | None = None,
        max_scan_keys: int = 10_000,
        sweep_interval_seconds: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be >= 1")
        if max_keys is not None and max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        self.default_ttl_seconds = default_ttl_seconds
        self.max_keys = max_keys
        self._max_scan_keys = max_scan_keys
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._sweeper: asyncio.Task[None] | None = None
        self.evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"LocalKVStore(default_ttl_seconds={self.default_ttl_seconds}, "
            f"max_keys={self.max_keys}, size={len(self._data)})"
        )

    def __len__(self) -> int:
        return len(self._data)

    def _expiry(self, ttl_seconds: int | None) -> float:
        return self._clock() + (ttl_seconds or self.default_ttl_seconds)

    def _live_entry_locked(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _evict_if_over_capacity_locked(self) -> None:
        if self.max_keys is None:
            return
        while len(self._data) > self.max_keys:
            # popitem(last=False) removes the least recently used entry
            key, _ = self._data.popitem(last=False)
            self.evictions += 1
            logger.debug("store.local.evicted", extra={"reason": "capacity", "size": len(self._data)})

    def _write_locked(self, key: str, entry: _Entry) -> None:
        self._data[key] = entry
        self._data.move_to_end(key)
        self._evict_if_over_capacity_locked()

    async def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return MISSING
            self._data.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._write_locked(key, _Entry(value=value, expires_at=self._expiry(ttl_seconds)))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry_locked(key) is not None

    async def scan(self, pattern: str) -> list[str]:
        with self._lock:
            matches: list[str] = []
            for key in list(self._data):
                if not fnmatch.fnmatchcase(key, pattern):
                    continue
                if self._live_entry_locked(key) is None:
                    continue
                matches.append(key)
                if len(matches) >= self._max_scan_keys:
                    break
            return matches

    async def flush_all(self) -> None:
        with self._lock:
            self._data.clear()
        logger.info("store.local.flushed")

    async def ping(self) -> bool:
        return True

    async def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value=0, expires_at=self._expiry(ttl_seconds))
            entry.value = int(entry.value) + amount
            self._write_locked(key, entry)
            return entry.value

    async def increment_within(
        self,
        key: str,
        amount: int,
        ceiling: int,
        ttl_seconds: int,
    ) -> tuple[bool, int]:
        with self._lock:
            entry = self._live_entry_locked(key)
            current = int(entry.value) if entry is not None else 0
            if current + amount > ceiling:
                return False, current
            if entry is None:
                entry = _Entry(value=0, expires_at=self._expiry(ttl_seconds))
            entry.value = current + amount
            self._write_locked(key, entry)
            return True, entry.value

    async def ttl(self, key: str) -> int | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0, math.ceil(entry.expires_at - self._clock()))

    def sweep(self) -> int:
        """Drop every expired key.

        Returns:
            Number of keys removed.
        """

        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, entry in self._data.items()
                if entry.expires_at is not None and entry.expires_at <= now
            ]
            for key in expired:
                del self._data[key]
        if expired:
            logger.debug("store.local.swept", extra={"expired": len(expired), "size": len(self._data)})
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start_sweeper(self) -> None:
        """Start the periodic expiry task on the running event loop."""

        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def close(self) -> None:
        await self.stop_sweeper()
