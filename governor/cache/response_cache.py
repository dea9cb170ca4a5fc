"""Cache-aside response cache built on the key-value store.

The cache never fails a request: store outages are logged and treated as
misses (lookup) or no-ops (store, invalidate). Entries that cannot be
decoded are deleted and treated as misses.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from governor.adapters.store.base import MISSING, AbstractKVStore
from governor.cache.keys import (
    RequestDescriptor,
    build_cache_key,
    identity_key_pattern,
    path_glob_to_key_pattern,
)
from governor.cache.policy import CachePolicy
from governor.core.errors import CacheCorruptionError, StoreUnavailableError
from governor.core.logging import hash_identity

logger = logging.getLogger(__name__)

CACHEABLE_METHODS = frozenset({"GET"})


@dataclass(frozen=True)
class CachedResponse:
    """A successful handler output, replayed verbatim on a hit."""

    status_code: int
    body: bytes
    media_type: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class CacheEntry:
    """Stored form of a cached response.

    Attributes:
        key: Cache key derived from the request descriptor.
        value: The response to replay.
        created_at: UNIX time of the write.
        ttl_seconds: Lifetime of the entry.
    """

    key: str
    value: CachedResponse
    created_at: float
    ttl_seconds: int

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds

    def to_document(self) -> dict[str, Any]:
        return {
            "status_code": self.value.status_code,
            "body": base64.b64encode(self.value.body).decode("ascii"),
            "media_type": self.value.media_type,
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_document(cls, key: str, document: Any) -> "CacheEntry":
        """Rebuild an entry from its stored document.

        Raises:
            CacheCorruptionError: If the document does not have the expected shape.
        """
        try:
            return cls(
                key=key,
                value=CachedResponse(
                    status_code=int(document["status_code"]),
                    body=base64.b64decode(document["body"], validate=True),
                    media_type=document.get("media_type"),
                ),
                created_at=float(document["created_at"]),
                ttl_seconds=int(document["ttl_seconds"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError, binascii.Error) as exc:
            raise CacheCorruptionError(
                code="cache_corruption",
                message="Cached entry has an unexpected shape",
                details={"key": hash_identity(key)},
            ) from exc


class ResponseCache:
    """Lookup, store and invalidate cached responses.

    Attributes:
        key_prefix: Namespace of cache keys in the store.
        default_ttl_seconds: TTL used when neither caller nor policy sets one.
    """

    def __init__(
        self,
        store: AbstractKVStore,
        *,
        key_prefix: str = "cache",
        default_ttl_seconds: int = 300,
        personalized_path_patterns: Iterable[str] = ("/dashboard",),
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.key_prefix = key_prefix
        self.default_ttl_seconds = default_ttl_seconds
        self._personalized = tuple(personalized_path_patterns)
        self._enabled = enabled
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ResponseCache(backend={self._store.backend_type}, prefix={self.key_prefix!r}, "
            f"hits={self._hits}, misses={self._misses})"
        )

    def is_bypassed(self, descriptor: RequestDescriptor, policy: CachePolicy | None = None) -> bool:
        """Return True when a request must neither be looked up nor stored."""

        if not self._enabled or descriptor.method not in CACHEABLE_METHODS:
            return True
        if policy is not None and policy.personalized:
            return True
        return any(fragment in descriptor.path for fragment in self._personalized)

    def key_for(self, descriptor: RequestDescriptor) -> str:
        return build_cache_key(descriptor, self.key_prefix)

    async def _discard_corrupt(self, key: str) -> None:
        logger.warning("cache.corrupt_entry", extra={"cache_key": hash_identity(key)})
        try:
            await self._store.delete(key)
        except StoreUnavailableError:
            logger.warning("cache.delete_failed", extra={"cache_key": hash_identity(key)})

    async def lookup(
        self,
        descriptor: RequestDescriptor,
        policy: CachePolicy | None = None,
    ) -> CachedResponse | None:
        """Return the cached response for a GET, or None on miss/bypass."""

        if self.is_bypassed(descriptor, policy):
            return None

        key = self.key_for(descriptor)
        try:
            document = await self._store.get(key)
            entry = None if document is MISSING else CacheEntry.from_document(key, document)
        except StoreUnavailableError:
            logger.warning("cache.lookup_failed", extra={"cache_key": hash_identity(key)})
            entry = None
        except CacheCorruptionError:
            await self._discard_corrupt(key)
            entry = None

        if entry is None or entry.is_expired(self._clock()):
            self._misses += 1
            logger.debug("cache.miss", extra={"cache_key": hash_identity(key)})
            return None

        self._hits += 1
        logger.debug("cache.hit", extra={"cache_key": hash_identity(key)})
        return entry.value

    async def store(
        self,
        descriptor: RequestDescriptor,
        response: CachedResponse,
        ttl_seconds: int | None = None,
        policy: CachePolicy | None = None,
    ) -> bool:
        """Persist a successful GET response.

        Returns:
            True if an entry was written.
        """

        if self.is_bypassed(descriptor, policy) or not response.is_success:
            return False

        ttl = ttl_seconds or (policy.ttl_seconds if policy else None) or self.default_ttl_seconds
        key = self.key_for(descriptor)
        entry = CacheEntry(key=key, value=response, created_at=self._clock(), ttl_seconds=ttl)
        try:
            await self._store.set(key, entry.to_document(), ttl)
        except StoreUnavailableError:
            logger.warning("cache.store_failed", extra={"cache_key": hash_identity(key)})
            return False

        logger.debug("cache.set", extra={"cache_key": hash_identity(key), "ttl_s": ttl})
        return True

    async def invalidate(self, patterns: Iterable[str]) -> int:
        """Delete every key matching any of the key globs.

        Returns:
            Number of keys deleted.
        """

        deleted = 0
        for pattern in dict.fromkeys(patterns):
            try:
                keys = await self._store.scan(pattern)
                for key in keys:
                    await self._store.delete(key)
                    deleted += 1
            except StoreUnavailableError:
                logger.warning("cache.invalidate_failed", extra={"pattern": pattern})
                continue
            if keys:
                logger.info("cache.invalidated", extra={"pattern": pattern, "deleted": len(keys)})
        return deleted

    async def invalidate_paths(self, path_globs: Iterable[str]) -> int:
        return await self.invalidate(
            path_glob_to_key_pattern(glob, self.key_prefix) for glob in path_globs
        )

    async def invalidate_for_identity(self, identity: str) -> int:
        """Drop every entry whose key embeds ``identity``."""

        return await self.invalidate([identity_key_pattern(identity, self.key_prefix)])

    async def clear(self) -> int:
        return await self.invalidate([f"{self.key_prefix}:*"])

    async def stats(self) -> dict[str, Any]:
        """Return cache counters without exposing values."""

        try:
            total_keys = len(await self._store.scan(f"{self.key_prefix}:*"))
        except StoreUnavailableError:
            total_keys = 0
        return {
            "type": self._store.backend_type,
            "totalKeys": total_keys,
            "hits": self._hits,
            "misses": self._misses,
        }
