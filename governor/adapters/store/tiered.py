"""Two-tier store: a short-lived local near-cache in front of the shared store.

Reads are served locally when possible and fall back to the shared store,
repopulating the local tier. Writes and deletes go to both tiers. Counters
live only in the shared tier so quota state stays authoritative across
processes.
"""

from __future__ import annotations

import logging
from typing import Any

from governor.adapters.store.base import MISSING, AbstractKVStore
from governor.adapters.store.local import LocalKVStore

logger = logging.getLogger(__name__)


class TieredKVStore(AbstractKVStore):
    backend_type = "shared"

    def __init__(
        self,
        local: LocalKVStore,
        shared: AbstractKVStore,
        *,
        local_ttl_seconds: int = 60,
    ) -> None:
        self.local = local
        self.shared = shared
        self._local_ttl = local_ttl_seconds

    def _near_ttl(self, ttl_seconds: int | None) -> int:
        if not ttl_seconds:
            return self._local_ttl
        return min(ttl_seconds, self._local_ttl)

    async def get(self, key: str) -> Any:
        value = await self.local.get(key)
        if value is not MISSING:
            return value

        value = await self.shared.get(key)
        if value is not MISSING:
            remaining = await self.shared.ttl(key)
            await self.local.set(key, value, self._near_ttl(remaining))
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self.local.set(key, value, self._near_ttl(ttl_seconds))
        await self.shared.set(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.local.delete(key)
        await self.shared.delete(key)

    async def exists(self, key: str) -> bool:
        if await self.local.exists(key):
            return True
        return await self.shared.exists(key)

    async def scan(self, pattern: str) -> list[str]:
        # The shared tier is the source of truth, but a local entry may
        # outlive a shared delete made by another process until its short TTL.
        keys = await self.shared.scan(pattern)
        seen = set(keys)
        keys.extend(k for k in await self.local.scan(pattern) if k not in seen)
        return keys

    async def flush_all(self) -> None:
        await self.local.flush_all()
        await self.shared.flush_all()

    async def ping(self) -> bool:
        return await self.shared.ping()

    async def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        return await self.shared.incr(key, amount, ttl_seconds)

    async def increment_within(
        self,
        key: str,
        amount: int,
        ceiling: int,
        ttl_seconds: int,
    ) -> tuple[bool, int]:
        return await self.shared.increment_within(key, amount, ceiling, ttl_seconds)

    async def ttl(self, key: str) -> int | None:
        return await self.shared.ttl(key)

    async def close(self) -> None:
        await self.local.close()
        await self.shared.close()
