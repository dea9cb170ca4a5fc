"""Governor facade: admission control and response caching in one pipeline.

Per request the middleware calls :meth:`Governor.admit` before the handler
and :meth:`Governor.complete` with the handler's final response. Admission
runs first so over-quota callers are rejected before any cache or handler
work happens.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from governor.adapters.store.base import AbstractKVStore
from governor.cache.keys import RequestDescriptor
from governor.cache.policy import CachePolicyTable
from governor.cache.response_cache import CACHEABLE_METHODS, CachedResponse, ResponseCache
from governor.core.logging import hash_identity
from governor.quota.identity import build_identity_key
from governor.quota.ledger import QuotaDecision, QuotaLedger
from governor.quota.policies import QuotaPolicy, QuotaPolicyRegistry

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class Admitted:
    """Proceed to the handler."""

    quota: QuotaDecision | None = None


@dataclass(frozen=True)
class ServeCached:
    """Replay a cached response instead of calling the handler."""

    response: CachedResponse
    quota: QuotaDecision | None = None


@dataclass(frozen=True)
class Denied:
    """Reject with HTTP 429."""

    quota: QuotaDecision
    message: str

    status_code = 429

    @property
    def retry_after(self) -> int:
        return self.quota.retry_after_seconds or 0

    def body(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "retryAfter": self.retry_after}


Admission = Admitted | ServeCached | Denied


def _tighter(current: QuotaDecision | None, candidate: QuotaDecision) -> QuotaDecision:
    if current is None or candidate.remaining < current.remaining:
        return candidate
    return current


class Governor:
    """Composes the quota ledger and response cache around request handlers."""

    def __init__(
        self,
        store: AbstractKVStore,
        cache: ResponseCache,
        ledger: QuotaLedger,
        quotas: QuotaPolicyRegistry,
        cache_policies: CachePolicyTable,
        *,
        collection_patterns: Mapping[str, Sequence[str]] | None = None,
        rate_limit_enabled: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.ledger = ledger
        self.quotas = quotas
        self.cache_policies = cache_policies
        self._collection_patterns = {k: tuple(v) for k, v in (collection_patterns or {}).items()}
        self._rate_limit_enabled = rate_limit_enabled

    def is_exempt(self, path: str) -> bool:
        return self.quotas.is_exempt(path)

    async def consume(self, policy: QuotaPolicy, descriptor: RequestDescriptor) -> QuotaDecision:
        """Consume one unit of ``policy`` for the caller described by ``descriptor``."""

        return await self.ledger.consume(
            policy,
            build_identity_key(policy.key_strategy, descriptor),
            role=descriptor.role,
            authenticated=descriptor.is_authenticated,
        )

    async def admit(self, descriptor: RequestDescriptor) -> Admission:
        """Decide whether a request is denied, served from cache, or handled.

        Every applicable quota is consumed in order (general policy first)
        and the first denial wins. Cache lookup only happens once the caller
        is admitted.
        """

        quota: QuotaDecision | None = None
        if self._rate_limit_enabled and not self.is_exempt(descriptor.path):
            for policy in self.quotas.policies_for(descriptor.method, descriptor.path):
                decision = await self.consume(policy, descriptor)
                if not decision.allowed:
                    return Denied(quota=decision, message=policy.message)
                quota = _tighter(quota, decision)

        if descriptor.method in CACHEABLE_METHODS:
            policy = self.cache_policies.policy_for(descriptor.method, descriptor.path)
            cached = await self.cache.lookup(descriptor, policy)
            if cached is not None:
                return ServeCached(response=cached, quota=quota)

        return Admitted(quota=quota)

    def _invalidation_globs(self, descriptor: RequestDescriptor, mutated_collections: Iterable[str]) -> list[str]:
        policy = self.cache_policies.policy_for(descriptor.method, descriptor.path)
        globs = list(policy.invalidation_patterns)
        for collection in mutated_collections:
            patterns = self._collection_patterns.get(collection)
            if patterns is None:
                logger.debug("cache.unknown_collection", extra={"collection": collection})
                continue
            globs.extend(patterns)
        return list(dict.fromkeys(globs))

    async def complete(
        self,
        descriptor: RequestDescriptor,
        response: CachedResponse,
        mutated_collections: Iterable[str] = (),
    ) -> str:
        """Post-handler hook: store successful reads, invalidate after successful writes.

        Returns:
            Cache status label for the ``X-Cache`` header: ``MISS``, ``SKIP``
            or ``INVALIDATED``.
        """

        if descriptor.method in CACHEABLE_METHODS:
            policy = self.cache_policies.policy_for(descriptor.method, descriptor.path)
            if self.cache.is_bypassed(descriptor, policy):
                return "SKIP"
            await self.cache.store(descriptor, response, policy=policy)
            return "MISS"

        if descriptor.method not in MUTATING_METHODS or not response.is_success:
            return "SKIP"

        deleted = await self.cache.invalidate_paths(self._invalidation_globs(descriptor, mutated_collections))
        if descriptor.is_authenticated:
            deleted += await self.cache.invalidate_for_identity(descriptor.identity)

        logger.info(
            "cache.mutation_invalidated",
            extra={
                "method": descriptor.method,
                "path": descriptor.path,
                "identity_hash": hash_identity(descriptor.identity),
                "deleted": deleted,
            },
        )
        return "INVALIDATED"

    async def stats(self) -> dict[str, Any]:
        return {**await self.cache.stats(), "denials": self.ledger.denials}

    async def health(self) -> dict[str, Any]:
        return {"healthy": await self.store.ping(), "type": self.store.backend_type}

    async def close(self) -> None:
        await self.store.close()
