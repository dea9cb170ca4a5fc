"""HTTP middleware for request correlation and the governor pipeline.

``request_id_middleware`` stamps every request/response pair with a
correlation id. ``governor_middleware`` runs admission control and the
response cache around the route handler:

1. ``Governor.admit`` rejects over-quota callers with 429 or replays a
   cached response. Exempt paths (health checks, webhooks) are never
   charged quota.
2. Otherwise the handler runs; its final response is passed to
   ``Governor.complete`` together with the collections the handler reported
   through :func:`mark_mutated`.

Usage:
    app.middleware("http")(governor_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from governor.cache.keys import RequestDescriptor
from governor.cache.response_cache import CachedResponse
from governor.core.auth import resolve_principal
from governor.core.config import Settings
from governor.core.logging import clear_request_id, set_request_id
from governor.quota.ledger import QuotaDecision
from governor.services.governor import Denied, Governor, ServeCached


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID generation and propagation.

    If the client provides the configured request id header, that value is
    used; otherwise a UUID is generated. The id is kept in contextvars for
    log correlation and echoed back with the request duration.
    """

    header_name = request.app.state.settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


def mark_mutated(request: Request, *collections: str) -> None:
    """Record which resource collections a handler changed.

    The governor invalidates cached reads of these collections once the
    handler returns a 2xx response.

    Example:
        >>> @router.post("/api/donations")
        ... async def create_donation(request: Request):
        ...     mark_mutated(request, "donations")
    """

    existing = getattr(request.state, "mutated_collections", ())
    request.state.mutated_collections = (*existing, *collections)


async def describe_request(request: Request, cfg: Settings, *, include_body: bool = False) -> RequestDescriptor:
    """Build the request descriptor the governor keys on."""

    principal = resolve_principal(request, cfg.governor)
    body = await request.body() if include_body else None
    return RequestDescriptor.build(
        request.method,
        request.url.path,
        request.query_params.multi_items(),
        principal.id if principal else None,
        body,
        role=principal.role if principal else None,
        client_ip=request.client.host if request.client else None,
        body_digest_length=cfg.cache.body_digest_length,
    )


def _apply_quota_headers(response: Response, quota: QuotaDecision | None, cfg: Settings) -> None:
    if quota is None or not cfg.rate_limit.include_headers:
        return
    # Headers set by a route-level quota denial take precedence
    for name, value in quota.headers().items():
        response.headers.setdefault(name, value)


async def governor_middleware(request: Request, call_next) -> Response:
    """Admission control and response caching around the route handler."""

    governor: Governor = request.app.state.governor
    cfg: Settings = request.app.state.settings

    descriptor = await describe_request(request, cfg, include_body=request.method == "GET")
    outcome = await governor.admit(descriptor)

    if isinstance(outcome, Denied):
        denied = JSONResponse(status_code=outcome.status_code, content=outcome.body())
        _apply_quota_headers(denied, outcome.quota, cfg)
        return denied

    if isinstance(outcome, ServeCached):
        cached = outcome.response
        hit = Response(content=cached.body, status_code=cached.status_code, media_type=cached.media_type)
        hit.headers["X-Cache"] = "HIT"
        _apply_quota_headers(hit, outcome.quota, cfg)
        return hit

    response = await call_next(request)

    body = b""
    async for chunk in response.body_iterator:
        body += chunk

    cache_status = await governor.complete(
        descriptor,
        CachedResponse(
            status_code=response.status_code,
            body=body,
            media_type=response.headers.get("content-type"),
        ),
        getattr(request.state, "mutated_collections", ()),
    )

    # Rebuild from the consumed body; raw headers keep repeated fields like Set-Cookie
    final = Response(content=body, status_code=response.status_code, background=response.background)
    final.raw_headers = [
        *(item for item in response.raw_headers if item[0] != b"content-length"),
        *(item for item in final.raw_headers if item[0] == b"content-length"),
    ]
    final.headers["X-Cache"] = cache_status
    _apply_quota_headers(final, outcome.quota, cfg)
    return final
