"""Operational cache endpoints.

Stats are readable by any caller. Flush and invalidation require the
administrator role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from governor.core.auth import Principal, require_admin
from governor.core.logging import hash_identity
from governor.schemas.governor import CacheStatsResponse, InvalidateRequest, MutationResult
from governor.services.governor import Governor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["Cache"])


def get_governor(request: Request) -> Governor:
    return request.app.state.governor


@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(governor: Governor = Depends(get_governor)) -> CacheStatsResponse:
    """Return cache hit/miss counters, key count and quota denials."""

    return CacheStatsResponse.model_validate(await governor.stats())


@router.post("/flush", response_model=MutationResult)
async def flush_cache(
    governor: Governor = Depends(get_governor),
    admin: Principal = Depends(require_admin),
) -> MutationResult:
    """Drop every cached response. Quota counters are left intact."""

    deleted = await governor.cache.clear()
    logger.info("cache.flushed", extra={"deleted": deleted, "admin_hash": hash_identity(admin.id)})
    return MutationResult(deleted=deleted)


@router.post("/invalidate", response_model=MutationResult)
async def invalidate_cache(
    payload: InvalidateRequest,
    governor: Governor = Depends(get_governor),
    admin: Principal = Depends(require_admin),
) -> MutationResult:
    """Drop cached responses whose request path matches any of the globs."""

    deleted = await governor.cache.invalidate_paths(payload.patterns)
    logger.info(
        "cache.invalidated",
        extra={"patterns": payload.patterns, "deleted": deleted, "admin_hash": hash_identity(admin.id)},
    )
    return MutationResult(deleted=deleted)
