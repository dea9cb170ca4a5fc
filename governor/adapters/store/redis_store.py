"""Shared key-value store backed by Redis.

Every service instance talks to the same Redis, so cached responses and
quota counters are visible fleet-wide. Values are JSON-encoded; TTLs are
enforced server-side. Counter updates run as Lua scripts so increment and
compare happen atomically on the server.

Any connection failure, Redis error or timeout is reported as
``StoreUnavailableError`` so callers can degrade to pass-through.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from governor.adapters.store.base import MISSING, AbstractKVStore
from governor.core.errors import CacheCorruptionError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# KEYS[1] = counter key
# ARGV[1] = amount
# ARGV[2] = ttl_seconds, attached only when the key has no expiry yet
# Returns: counter value after increment
INCR_LUA = r"""
local current = redis.call('INCRBY', KEYS[1], ARGV[1])
if redis.call('TTL', KEYS[1]) < 0 then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return current
"""

# KEYS[1] = counter key
# ARGV[1] = amount
# ARGV[2] = ceiling
# ARGV[3] = ttl_seconds
# Returns: {applied, counter value}
INCREMENT_WITHIN_LUA = r"""
local key = KEYS[1]
local amount = tonumber(ARGV[1])
local ceiling = tonumber(ARGV[2])
local current = tonumber(redis.call('GET', key) or '0')

if current + amount > ceiling then
  return {0, current}
end

local updated = redis.call('INCRBY', key, amount)
if redis.call('TTL', key) < 0 then
  redis.call('EXPIRE', key, ARGV[3])
end
return {1, updated}
"""


class RedisKVStore(AbstractKVStore):
    """Redis implementation of the key-value store contract."""

    backend_type = "shared"

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        client: aioredis.Redis | None = None,
        namespace: str = "",
        default_ttl_seconds: int = 600,
        max_scan_keys: int = 10_000,
        operation_timeout_seconds: float = 5.0,
    ) -> None:
        """Initialize the store.

        Args:
            redis_url: Connection URL; ignored when ``client`` is given.
            client: Pre-built async Redis client (must decode responses).
            namespace: Prefix applied to every key.
            default_ttl_seconds: TTL used when callers pass none.
            max_scan_keys: Cap on keys returned by one scan.
            operation_timeout_seconds: Per-call timeout.

        Raises:
            ValueError: If neither a URL nor a client is provided.
        """
        if client is None:
            if not redis_url:
                raise ValueError("redis_url or client is required")
            client = aioredis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=operation_timeout_seconds,
                socket_timeout=operation_timeout_seconds,
                health_check_interval=30,
            )

        self._client = client
        self._namespace = namespace
        self.default_ttl_seconds = default_ttl_seconds
        self._max_scan_keys = max_scan_keys
        self._timeout = operation_timeout_seconds
        self._incr_script = client.register_script(INCR_LUA)
        self._increment_within_script = client.register_script(INCREMENT_WITHIN_LUA)

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a Redis call with a timeout, mapping failures to StoreUnavailableError."""

        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "store.unavailable",
                extra={
                    "backend": "redis",
                    "operation": operation,
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Shared store unavailable during {operation}",
                details={"backend": "redis", "operation": operation},
            ) from exc

    async def get(self, key: str) -> Any:
        raw = await self._run("get", self._client.get(self._key(key)))
        if raw is None:
            return MISSING
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheCorruptionError(
                code="cache_corruption",
                message="Stored value is not valid JSON",
                details={"key": key},
            ) from exc

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        await self._run(
            "set",
            self._client.set(self._key(key), payload, ex=ttl_seconds or self.default_ttl_seconds),
        )

    async def delete(self, key: str) -> None:
        await self._run("delete", self._client.delete(self._key(key)))

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", self._client.exists(self._key(key))))

    async def _collect(self, pattern: str) -> list[str]:
        keys: list[str] = []
        prefix_len = len(self._namespace)
        async for key in self._client.scan_iter(match=self._key(pattern), count=500):
            keys.append(key[prefix_len:])
            if len(keys) >= self._max_scan_keys:
                logger.warning(
                    "store.scan_truncated",
                    extra={"backend": "redis", "max_scan_keys": self._max_scan_keys},
                )
                break
        return keys

    async def scan(self, pattern: str) -> list[str]:
        return await self._run("scan", self._collect(pattern))

    async def flush_all(self) -> None:
        if not self._namespace:
            await self._run("flush_all", self._client.flushdb())
        else:
            # Walks the whole namespace; max_scan_keys only bounds lookups
            cursor = 0
            while True:
                cursor, keys = await self._run(
                    "flush_all",
                    self._client.scan(cursor=cursor, match=self._key("*"), count=500),
                )
                if keys:
                    await self._run("flush_all", self._client.delete(*keys))
                if not cursor:
                    break
        logger.info("store.redis.flushed")

    async def ping(self) -> bool:
        try:
            return bool(await self._run("ping", self._client.ping()))
        except StoreUnavailableError:
            return False

    async def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        result = await self._run(
            "incr",
            self._incr_script(
                keys=[self._key(key)],
                args=[amount, ttl_seconds or self.default_ttl_seconds],
            ),
        )
        return int(result)

    async def increment_within(
        self,
        key: str,
        amount: int,
        ceiling: int,
        ttl_seconds: int,
    ) -> tuple[bool, int]:
        applied, value = await self._run(
            "increment_within",
            self._increment_within_script(
                keys=[self._key(key)],
                args=[amount, ceiling, ttl_seconds],
            ),
        )
        return bool(int(applied)), int(value)

    async def ttl(self, key: str) -> int | None:
        remaining = await self._run("ttl", self._client.ttl(self._key(key)))
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    async def close(self) -> None:
        await self._client.aclose()
