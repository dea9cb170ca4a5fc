from __future__ import annotations

from governor.api.routes.cache import router as cache_router
from governor.api.routes.health import router as health_router

__all__ = ["cache_router", "health_router"]
