"""Quota ledger: fixed-window and point-based counters on the key-value store.

Fixed window:
- One counter per (policy, identity, window index); the index is
  ``floor(now / window_seconds)``. The first increment in a window creates
  the key with a TTL of one window, so stale windows expire on their own.
- Requests above the limit still increment the counter. Concurrent requests
  at the limit boundary may admit one extra request; this is inherent to the
  algorithm and accepted.

Points:
- One budget per (policy, identity) that lives for ``window_seconds`` from
  its first consumption. A consumption that would exceed the budget is
  rejected and leaves the budget untouched.

Store outages fail open: the request is admitted and the outage is logged.
"""

from __future__ import annotations

import logging
import math
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable

from governor.adapters.store.base import MISSING, AbstractKVStore
from governor.core.errors import StoreUnavailableError
from governor.core.logging import hash_identity
from governor.quota.policies import QuotaAlgorithm, QuotaPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    """Result of a quota check/consume operation.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Limit (or point budget) that applied to this caller.
        remaining: Remaining units in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the window or budget resets.
        retry_after_seconds: Suggested wait when blocked, else None.
        policy: Name of the policy that produced the decision.
        consumed: Units consumed in the current window after this call.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    policy: str = ""
    consumed: int = 0

    def headers(self) -> dict[str, str]:
        """Rate-limit response headers for this decision."""

        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds or 0)
        return headers


class QuotaLedger:
    """Consumes quota for identities against named policies."""

    def __init__(
        self,
        store: AbstractKVStore,
        *,
        key_prefix: str = "quota",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.key_prefix = key_prefix
        self._clock = clock
        self._denials: Counter[str] = Counter()

    @property
    def denials(self) -> dict[str, int]:
        return dict(self._denials)

    def _window_bounds(self, policy: QuotaPolicy, now: float) -> tuple[int, int]:
        """Return (window index, reset_at epoch seconds) for a fixed window."""

        index = int(now // policy.window_seconds)
        return index, (index + 1) * policy.window_seconds

    def _fail_open(self, policy: QuotaPolicy, identity_key: str, limit: int, now: float) -> QuotaDecision:
        logger.warning(
            "quota.store_unavailable",
            extra={"policy": policy.name, "key_hash": hash_identity(identity_key)},
        )
        return QuotaDecision(
            allowed=True,
            limit=limit,
            remaining=limit,
            reset_at=int(now) + policy.window_seconds,
            retry_after_seconds=None,
            policy=policy.name,
        )

    def _counter_key(self, policy: QuotaPolicy, identity_key: str, now: float) -> str:
        base = f"{self.key_prefix}:{policy.name}:{identity_key}"
        if policy.algorithm is QuotaAlgorithm.POINTS:
            return base
        index, _ = self._window_bounds(policy, now)
        return f"{base}:{index}"

    async def consume(
        self,
        policy: QuotaPolicy,
        identity_key: str,
        *,
        role: str | None = None,
        authenticated: bool = False,
        cost: int = 1,
    ) -> QuotaDecision:
        """Consume ``cost`` units of ``policy`` for ``identity_key``.

        Raises:
            ValueError: If identity_key is empty or cost is below 1.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not identity_key:
            raise ValueError("identity_key must be a non-empty string")

        limit = policy.limit_for(role, authenticated=authenticated)
        now = self._clock()

        try:
            if policy.algorithm is QuotaAlgorithm.POINTS:
                decision = await self._consume_points(policy, identity_key, limit, cost, now)
            else:
                decision = await self._consume_window(policy, identity_key, limit, cost, now)
        except StoreUnavailableError:
            return self._fail_open(policy, identity_key, limit, now)

        log_extra = {
            "policy": policy.name,
            "key_hash": hash_identity(identity_key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_s": policy.window_seconds,
        }
        if decision.allowed:
            logger.debug("quota.allowed", extra=log_extra)
        else:
            self._denials[policy.name] += 1
            logger.warning(
                "quota.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
        return decision

    async def _consume_window(
        self,
        policy: QuotaPolicy,
        identity_key: str,
        limit: int,
        cost: int,
        now: float,
    ) -> QuotaDecision:
        _, reset_at = self._window_bounds(policy, now)
        key = self._counter_key(policy, identity_key, now)
        count = await self._store.incr(key, cost, ttl_seconds=policy.window_seconds)

        allowed = count <= limit
        return QuotaDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after_seconds=None if allowed else max(0, math.ceil(reset_at - now)),
            policy=policy.name,
            consumed=count,
        )

    async def _consume_points(
        self,
        policy: QuotaPolicy,
        identity_key: str,
        limit: int,
        cost: int,
        now: float,
    ) -> QuotaDecision:
        key = self._counter_key(policy, identity_key, now)
        applied, consumed = await self._store.increment_within(
            key, cost, limit, policy.window_seconds
        )
        ttl = await self._store.ttl(key)
        if ttl is None:
            ttl = policy.window_seconds

        return QuotaDecision(
            allowed=applied,
            limit=limit,
            remaining=max(0, limit - consumed),
            reset_at=math.ceil(now + ttl),
            retry_after_seconds=None if applied else ttl,
            policy=policy.name,
            consumed=consumed,
        )

    async def usage(
        self,
        policy: QuotaPolicy,
        identity_key: str,
        *,
        role: str | None = None,
        authenticated: bool = False,
    ) -> QuotaDecision:
        """Snapshot of the current window without consuming anything."""

        limit = policy.limit_for(role, authenticated=authenticated)
        now = self._clock()
        key = self._counter_key(policy, identity_key, now)

        try:
            value = await self._store.get(key)
            ttl = await self._store.ttl(key) if policy.algorithm is QuotaAlgorithm.POINTS else None
        except StoreUnavailableError:
            return self._fail_open(policy, identity_key, limit, now)

        consumed = 0 if value is MISSING else int(value)
        if policy.algorithm is QuotaAlgorithm.POINTS:
            reset_at = math.ceil(now + (ttl if ttl is not None else policy.window_seconds))
        else:
            _, reset_at = self._window_bounds(policy, now)

        allowed = consumed < limit
        return QuotaDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - consumed),
            reset_at=reset_at,
            retry_after_seconds=None if allowed else max(0, math.ceil(reset_at - now)),
            policy=policy.name,
            consumed=consumed,
        )

    async def reset(self, policy: QuotaPolicy, identity_key: str) -> None:
        """Forget the identity's current window or budget."""

        try:
            await self._store.delete(self._counter_key(policy, identity_key, self._clock()))
        except StoreUnavailableError:
            logger.warning(
                "quota.store_unavailable",
                extra={"policy": policy.name, "key_hash": hash_identity(identity_key)},
            )
            return
        logger.info("quota.reset", extra={"policy": policy.name, "key_hash": hash_identity(identity_key)})
