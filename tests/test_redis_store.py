"""Tests for the Redis-backed store against an in-process fake server."""

import asyncio
from unittest.mock import MagicMock

import fakeredis
import pytest

from governor.adapters.store.base import MISSING
from governor.adapters.store.redis_store import RedisKVStore
from governor.core.errors import CacheCorruptionError, StoreUnavailableError


@pytest.mark.asyncio
async def test_round_trips_json_values(redis_store: RedisKVStore) -> None:
    await redis_store.set("k", {"status_code": 200, "body": "e30="}, ttl_seconds=30)

    assert await redis_store.get("k") == {"status_code": 200, "body": "e30="}
    assert await redis_store.exists("k") is True
    assert 0 < await redis_store.ttl("k") <= 30


@pytest.mark.asyncio
async def test_missing_key_returns_sentinel(redis_store: RedisKVStore) -> None:
    assert await redis_store.get("absent") is MISSING
    assert await redis_store.ttl("absent") is None


@pytest.mark.asyncio
async def test_namespace_is_applied_and_stripped(fake_server: fakeredis.FakeServer, redis_store: RedisKVStore) -> None:
    await redis_store.set("cache:a", 1)
    await redis_store.set("cache:b", 2)

    raw = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    assert await raw.exists("test:cache:a") == 1
    assert sorted(await redis_store.scan("cache:*")) == ["cache:a", "cache:b"]


@pytest.mark.asyncio
async def test_non_json_value_raises_corruption(fake_server: fakeredis.FakeServer, redis_store: RedisKVStore) -> None:
    raw = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    await raw.set("test:broken", "{not json")

    with pytest.raises(CacheCorruptionError):
        await redis_store.get("broken")


@pytest.mark.asyncio
async def test_flush_all_with_namespace_keeps_foreign_keys(
    fake_server: fakeredis.FakeServer, redis_store: RedisKVStore
) -> None:
    raw = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    await raw.set("other:key", "1")
    await redis_store.set("mine", 1)

    await redis_store.flush_all()

    assert await redis_store.get("mine") is MISSING
    assert await raw.get("other:key") == "1"


@pytest.mark.asyncio
async def test_flush_all_ignores_scan_cap(fake_server: fakeredis.FakeServer) -> None:
    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    store = RedisKVStore(client=client, namespace="test:", max_scan_keys=3, operation_timeout_seconds=0.5)
    for i in range(1200):
        await store.set(f"cache:{i}", i)

    assert len(await store.scan("cache:*")) == 3

    await store.flush_all()

    assert await client.keys("test:*") == []


@pytest.mark.asyncio
async def test_incr_creates_counter_with_ttl(redis_store: RedisKVStore) -> None:
    assert await redis_store.incr("counter", 1, ttl_seconds=60) == 1
    assert await redis_store.incr("counter", 2, ttl_seconds=60) == 3
    assert 0 < await redis_store.ttl("counter") <= 60


@pytest.mark.asyncio
async def test_increment_within_is_conditional(redis_store: RedisKVStore) -> None:
    assert await redis_store.increment_within("points", 8, 10, 3600) == (True, 8)
    assert await redis_store.increment_within("points", 3, 10, 3600) == (False, 8)
    assert await redis_store.increment_within("points", 2, 10, 3600) == (True, 10)
    assert 0 < await redis_store.ttl("points") <= 3600


@pytest.mark.asyncio
async def test_ping_reports_health(fake_server: fakeredis.FakeServer, redis_store: RedisKVStore) -> None:
    assert await redis_store.ping() is True

    fake_server.connected = False
    assert await redis_store.ping() is False


@pytest.mark.asyncio
async def test_unreachable_server_raises_store_unavailable(
    fake_server: fakeredis.FakeServer, redis_store: RedisKVStore
) -> None:
    fake_server.connected = False

    with pytest.raises(StoreUnavailableError) as exc_info:
        await redis_store.get("k")

    assert exc_info.value.code == "store_unavailable"
    assert exc_info.value.details["operation"] == "get"

    with pytest.raises(StoreUnavailableError):
        await redis_store.incr("c", ttl_seconds=60)


@pytest.mark.asyncio
async def test_slow_operation_times_out() -> None:
    async def hang(*args, **kwargs):
        await asyncio.sleep(1)

    client = MagicMock()
    client.get = hang
    store = RedisKVStore(client=client, operation_timeout_seconds=0.05)

    with pytest.raises(StoreUnavailableError):
        await store.get("k")


def test_requires_url_or_client() -> None:
    with pytest.raises(ValueError):
        RedisKVStore()
