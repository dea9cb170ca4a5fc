"""Builds the governor and its immutable policy tables from settings.

Everything here runs once at startup. Policy inconsistencies raise
``InvalidPolicyConfigurationError`` before the application serves traffic.
"""

from __future__ import annotations

import logging

from governor.adapters.store.base import AbstractKVStore
from governor.adapters.store.factory import create_kv_store
from governor.cache.policy import CachePolicy, CachePolicyTable, CacheRoute
from governor.cache.response_cache import ResponseCache
from governor.core.config import CacheSettings, RateLimitSettings, Settings
from governor.core.errors import InvalidPolicyConfigurationError
from governor.quota.ledger import QuotaLedger
from governor.quota.policies import (
    KeyStrategy,
    QuotaAlgorithm,
    QuotaBinding,
    QuotaPolicy,
    QuotaPolicyRegistry,
    RoleLimits,
)
from governor.services.governor import Governor

logger = logging.getLogger(__name__)

GENERAL_POLICY = "api"

MINUTE = 60
HOUR = 60 * MINUTE


def default_quota_registry(cfg: RateLimitSettings) -> QuotaPolicyRegistry:
    """General role-aware API quota plus the stricter endpoint quotas."""

    policies = [
        QuotaPolicy(
            name=GENERAL_POLICY,
            limit=RoleLimits.from_mapping(
                cfg.role_limits,
                anonymous=cfg.anonymous_limit,
                default=cfg.default_limit,
            ),
            window_seconds=cfg.window_seconds,
            key_strategy=KeyStrategy.IDENTITY,
            message="Too many requests from this client, please try again later",
        ),
        QuotaPolicy(
            name="auth",
            limit=5,
            window_seconds=15 * MINUTE,
            message="Too many login attempts from this IP, please try again after 15 minutes",
        ),
        QuotaPolicy(
            name="password_reset",
            limit=3,
            window_seconds=HOUR,
            message="Too many password reset requests, please try again later",
        ),
        QuotaPolicy(
            name="search",
            limit=30,
            window_seconds=MINUTE,
            message="Too many search requests, please slow down",
        ),
        QuotaPolicy(
            name="contact",
            limit=5,
            window_seconds=HOUR,
            message="Too many contact form submissions, please try again later",
        ),
        QuotaPolicy(
            name="donation_request",
            limit=10,
            window_seconds=HOUR,
            algorithm=QuotaAlgorithm.POINTS,
            key_strategy=KeyStrategy.IDENTITY,
            message="Too many donation requests, please try again later",
        ),
    ]
    bindings = [
        QuotaBinding("/api/auth/login", "auth", method="POST"),
        QuotaBinding("/api/auth/register", "auth", method="POST"),
        QuotaBinding("/api/auth/forgot-password", "password_reset", method="POST"),
        QuotaBinding("/api/search", "search"),
        QuotaBinding("/api/contact", "contact", method="POST"),
        QuotaBinding("/api/donations", "donation_request", method="POST"),
    ]
    return QuotaPolicyRegistry.build(
        policies,
        bindings,
        general=GENERAL_POLICY,
        exempt_paths=cfg.exempt_paths,
        exempt_prefixes=cfg.exempt_prefixes,
        known_roles=cfg.role_limits.keys(),
    )


def default_cache_policies(cfg: CacheSettings) -> CachePolicyTable:
    """Route cache policies; ``CACHE_ROUTE_TTLS`` entries take precedence."""

    overrides = [CacheRoute(glob, CachePolicy(ttl_seconds=ttl)) for glob, ttl in cfg.route_ttls.items()]
    routes = [
        CacheRoute("/health*", CachePolicy(personalized=True)),
        CacheRoute("/api/health*", CachePolicy(personalized=True)),
        CacheRoute("/api/cache*", CachePolicy(personalized=True)),
        CacheRoute("/api/dashboard*", CachePolicy(personalized=True)),
        CacheRoute("/api/users/me*", CachePolicy(personalized=True)),
        CacheRoute("/api/notifications*", CachePolicy(personalized=True)),
        CacheRoute("/api/search*", CachePolicy(ttl_seconds=MINUTE)),
        CacheRoute("/api/analytics*", CachePolicy(ttl_seconds=10 * MINUTE)),
        CacheRoute(
            "/api/donations*",
            CachePolicy(
                ttl_seconds=5 * MINUTE,
                invalidation_patterns=("/api/donations*", "/api/search*", "/api/analytics*"),
            ),
        ),
        CacheRoute(
            "/api/funding*",
            CachePolicy(
                ttl_seconds=5 * MINUTE,
                invalidation_patterns=("/api/funding*", "/api/analytics*"),
            ),
        ),
        CacheRoute(
            "/api/posts*",
            CachePolicy(ttl_seconds=5 * MINUTE, invalidation_patterns=("/api/posts*",)),
        ),
    ]
    return CachePolicyTable([*overrides, *routes], default=CachePolicy(ttl_seconds=cfg.default_ttl_seconds))


def build_governor(
    cfg: Settings,
    *,
    store: AbstractKVStore | None = None,
    quotas: QuotaPolicyRegistry | None = None,
    cache_policies: CachePolicyTable | None = None,
) -> Governor:
    """Construct the governor once at startup.

    Args:
        cfg: Application settings.
        store: Pre-built store; created from ``cfg.store`` when omitted.
        quotas: Quota registry; defaults to :func:`default_quota_registry`.
        cache_policies: Cache route table; defaults to :func:`default_cache_policies`.

    Raises:
        InvalidPolicyConfigurationError: If policies or store settings are inconsistent.
    """

    if cfg.cache.key_prefix == cfg.rate_limit.key_prefix:
        raise InvalidPolicyConfigurationError(
            code="shared_key_prefix",
            message="Cache and quota key prefixes must differ",
            details={"context": {"prefix": cfg.cache.key_prefix}},
        )

    store = store or create_kv_store(cfg.store)
    governor = Governor(
        store=store,
        cache=ResponseCache(
            store,
            key_prefix=cfg.cache.key_prefix,
            default_ttl_seconds=cfg.cache.default_ttl_seconds,
            personalized_path_patterns=cfg.cache.personalized_path_patterns,
            enabled=cfg.cache.enabled,
        ),
        ledger=QuotaLedger(store, key_prefix=cfg.rate_limit.key_prefix),
        quotas=quotas or default_quota_registry(cfg.rate_limit),
        cache_policies=cache_policies or default_cache_policies(cfg.cache),
        collection_patterns=cfg.cache.collection_patterns,
        rate_limit_enabled=cfg.rate_limit.enabled,
    )

    logger.info(
        "governor.initialized",
        extra={
            "backend": store.backend_type,
            "cache_enabled": cfg.cache.enabled,
            "rate_limit_enabled": cfg.rate_limit.enabled,
        },
    )
    return governor
