"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment so settings never pick up a developer's .env file
or a real Redis instance.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["TESTING"] = "true"

os.environ.setdefault("STORE_BACKEND", "local")
os.environ.pop("STORE_REDIS_URL", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis
import pytest

from governor.adapters.store.local import LocalKVStore
from governor.adapters.store.redis_store import RedisKVStore


@pytest.fixture
def local_store() -> LocalKVStore:
    return LocalKVStore(default_ttl_seconds=600)


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def redis_store(fake_server: fakeredis.FakeServer) -> RedisKVStore:
    """Redis-backed store talking to an in-process fake server."""

    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    return RedisKVStore(client=client, namespace="test:", operation_timeout_seconds=0.5)
