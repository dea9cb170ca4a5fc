"""Per-route cache policies.

Policies are immutable and resolved by path glob (``fnmatch`` semantics,
first match wins). Invalidation patterns are path globs as well; the codec
turns them into key globs, so ``/api/donations*`` purges every cached read
under that prefix for every identity.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from dataclasses import dataclass

from governor.core.errors import InvalidPolicyConfigurationError


@dataclass(frozen=True)
class CachePolicy:
    """Caching rules for one route.

    Attributes:
        ttl_seconds: Lifetime of stored responses; None uses the cache default.
        personalized: Never look up or store (identity-specific content).
        invalidation_patterns: Path globs purged after a successful mutation
            on this route.
    """

    ttl_seconds: int | None = None
    personalized: bool = False
    invalidation_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheRoute:
    path_glob: str
    policy: CachePolicy
    method: str | None = None

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and self.method != method:
            return False
        return fnmatch.fnmatchcase(path, self.path_glob)


class CachePolicyTable:
    """Immutable route -> CachePolicy lookup."""

    def __init__(self, routes: Iterable[CacheRoute] = (), default: CachePolicy | None = None) -> None:
        self._routes = tuple(routes)
        self._default = default or CachePolicy()

        for route in (*self._routes, CacheRoute("*", self._default)):
            ttl = route.policy.ttl_seconds
            if ttl is not None and ttl < 1:
                raise InvalidPolicyConfigurationError(
                    code="invalid_cache_ttl",
                    message=f"Cache policy for '{route.path_glob}' has ttl_seconds < 1",
                    details={"context": {"path_glob": route.path_glob, "ttl_seconds": ttl}},
                )

    @property
    def routes(self) -> tuple[CacheRoute, ...]:
        return self._routes

    def policy_for(self, method: str, path: str) -> CachePolicy:
        for route in self._routes:
            if route.matches(method, path):
                return route.policy
        return self._default
