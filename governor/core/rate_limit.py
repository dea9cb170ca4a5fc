"""Per-route quota dependency for FastAPI.

The governor middleware already applies the general quota and every policy
bound to the request path. ``enforce_quota`` lets a route opt into an
additional named policy without a path binding:

    @router.post("/api/donations/{id}/requests")
    async def request_donation(
        quota: QuotaDecision = Depends(enforce_quota("donation_request")),
    ): ...
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request

from governor.core.errors import QuotaExceededError
from governor.core.middleware import describe_request
from governor.quota.ledger import QuotaDecision
from governor.services.governor import Governor

logger = logging.getLogger(__name__)


def enforce_quota(policy_name: str) -> Callable[[Request], Awaitable[QuotaDecision | None]]:
    """Build a dependency consuming one unit of the named quota policy.

    The policy name is resolved when the dependency runs, against the
    registry of the governor attached to the application.

    Args:
        policy_name: Registered quota policy name.

    Returns:
        Async dependency returning the allowed decision, or None while
        rate limiting is disabled.

    Raises:
        QuotaExceededError: From the dependency, when the budget is exhausted.
        InvalidPolicyConfigurationError: If the policy is not registered.
    """

    async def dependency(request: Request) -> QuotaDecision | None:
        governor: Governor = request.app.state.governor
        cfg = request.app.state.settings
        policy = governor.quotas.get(policy_name)

        if not cfg.rate_limit.enabled:
            return None

        descriptor = await describe_request(request, cfg)
        decision = await governor.consume(policy, descriptor)
        if not decision.allowed:
            raise QuotaExceededError(decision, policy.message)

        logger.debug(
            "quota.allowed",
            extra={"policy": policy.name, "remaining": decision.remaining, "limit": decision.limit},
        )
        return decision

    return dependency
