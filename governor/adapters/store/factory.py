"""Factory for the key-value store selected by configuration."""

from __future__ import annotations

import logging

from governor.adapters.store.base import AbstractKVStore
from governor.adapters.store.local import LocalKVStore
from governor.adapters.store.redis_store import RedisKVStore
from governor.adapters.store.tiered import TieredKVStore
from governor.core.config import StoreSettings
from governor.core.errors import InvalidPolicyConfigurationError

logger = logging.getLogger(__name__)


def _build_local(cfg: StoreSettings) -> LocalKVStore:
    return LocalKVStore(
        default_ttl_seconds=cfg.default_ttl_seconds,
        max_keys=cfg.max_keys,
        max_scan_keys=cfg.max_scan_keys,
        sweep_interval_seconds=cfg.sweep_interval_seconds,
    )


def _build_shared(cfg: StoreSettings) -> RedisKVStore:
    return RedisKVStore(
        cfg.redis_url,
        namespace=cfg.namespace,
        default_ttl_seconds=cfg.default_ttl_seconds,
        max_scan_keys=cfg.max_scan_keys,
        operation_timeout_seconds=cfg.operation_timeout_seconds,
    )


def create_kv_store(cfg: StoreSettings) -> AbstractKVStore:
    """Instantiate the configured store backend.

    Called once at startup; the result is injected into the governor.
    ``auto`` chooses Redis when a URL is configured and the local store
    otherwise.

    Args:
        cfg: Store settings.

    Returns:
        AbstractKVStore: Ready-to-use store (connections are lazy).

    Raises:
        InvalidPolicyConfigurationError: If a shared backend is requested
            without a connection URL.
    """
    backend = cfg.backend
    if backend == "auto":
        backend = "shared" if cfg.redis_url else "local"

    if backend in ("shared", "tiered") and not cfg.redis_url:
        raise InvalidPolicyConfigurationError(
            code="store_url_missing",
            message=f"Store backend '{backend}' requires STORE_REDIS_URL",
            details={"backend": backend},
        )

    if backend == "local":
        store: AbstractKVStore = _build_local(cfg)
    elif backend == "shared":
        store = _build_shared(cfg)
    else:
        store = TieredKVStore(
            _build_local(cfg),
            _build_shared(cfg),
            local_ttl_seconds=cfg.local_ttl_seconds,
        )

    logger.info("store.backend_selected", extra={"backend": backend})
    return store
