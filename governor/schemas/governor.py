"""Pydantic schemas for the governor's operational endpoints."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class StoreHealth(BaseModel):
    """Reachability of the key-value backend."""

    healthy: bool = Field(..., description="Whether the store answered a ping.")
    type: Literal["local", "shared"] = Field(..., description="Backend kind in use.")


class HealthResponse(BaseModel):
    """Service health; ``degraded`` while the store is unreachable."""

    status: Literal["ok", "degraded"]
    store: StoreHealth


class CacheStatsResponse(BaseModel):
    """Cache counters since process start plus current key count."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["local", "shared"]
    total_keys: int = Field(..., alias="totalKeys", ge=0)
    hits: int = Field(..., ge=0)
    misses: int = Field(..., ge=0)
    denials: dict[str, int] = Field(
        default_factory=dict,
        description="Quota denials per policy name since process start.",
    )


class InvalidateRequest(BaseModel):
    """Path globs whose cached GET responses should be dropped."""

    patterns: list[str] = Field(
        ...,
        min_length=1,
        description="Request path globs, e.g. '/api/donations*'.",
    )


class MutationResult(BaseModel):
    """Outcome of an administrative cache operation."""

    success: bool = True
    deleted: int = Field(..., ge=0, description="Number of cache entries removed.")
