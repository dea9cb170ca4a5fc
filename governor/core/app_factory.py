"""Application factory for the governed FastAPI app.

Centralizes app construction (governor, middleware, handlers, routers) so
tests can build isolated apps with their own settings and store.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from governor.adapters.store.base import AbstractKVStore
from governor.adapters.store.local import LocalKVStore
from governor.adapters.store.tiered import TieredKVStore
from governor.api.routes import cache_router, health_router
from governor.core.config import Settings, settings
from governor.core.exception_handlers import setup_exception_handlers
from governor.core.logging import configure_logging
from governor.core.middleware import governor_middleware, request_id_middleware
from governor.services.registry import build_governor


def _sweepable(store: AbstractKVStore) -> LocalKVStore | None:
    if isinstance(store, LocalKVStore):
        return store
    if isinstance(store, TieredKVStore):
        return store.local
    return None


def create_app(app_settings: Settings | None = None, *, store: AbstractKVStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the process settings.
        store: Pre-built key-value store (tests inject local or fake stores).

    Returns:
        Configured FastAPI app.

    Raises:
        InvalidPolicyConfigurationError: If cache or quota policies are inconsistent.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    governor = build_governor(cfg, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        local = _sweepable(governor.store)
        if local is not None:
            local.start_sweeper()
        yield
        await governor.close()

    app = FastAPI(
        title="Adaptive Request Governor",
        description=(
            "Response caching and role-aware request quotas for a JSON API. "
            "Successful GET responses are cached per caller; writes invalidate "
            "the affected collections; over-quota callers receive 429."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.governor = governor

    # Middleware: the last one added runs first
    app.middleware("http")(governor_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(cache_router)

    return app
