from __future__ import annotations

from fastapi import APIRouter, Request

from governor.schemas.governor import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Reports ``degraded`` rather than failing when the key-value store is
    unreachable: the governor keeps serving with caching and quotas
    failing open.
    """

    store = await request.app.state.governor.health()
    return HealthResponse(status="ok" if store["healthy"] else "degraded", store=store)
