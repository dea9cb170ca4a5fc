"""Key-value store adapters.

The cache and quota components depend on ``AbstractKVStore`` only; the
factory picks the in-process or Redis-backed implementation at startup.
"""

from governor.adapters.store.base import MISSING, AbstractKVStore
from governor.adapters.store.factory import create_kv_store
from governor.adapters.store.local import LocalKVStore
from governor.adapters.store.redis_store import RedisKVStore
from governor.adapters.store.tiered import TieredKVStore

__all__ = [
    "MISSING",
    "AbstractKVStore",
    "LocalKVStore",
    "RedisKVStore",
    "TieredKVStore",
    "create_kv_store",
]
