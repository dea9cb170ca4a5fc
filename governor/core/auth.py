"""Principal resolution for the governor.

Credential verification happens upstream. This module only reads the
outcome: a ``Principal`` placed on ``request.state.principal`` by an
authentication middleware, or the principal headers forwarded by a trusted
gateway. Requests with neither are anonymous.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from governor.core.config import GovernorSettings
from governor.core.errors import AuthenticationAppError
from governor.core.logging import hash_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller.

    Attributes:
        id: Stable principal identifier.
        role: Role tier used for role-aware quotas (None when unknown).
    """

    id: str
    role: str | None = None


def resolve_principal(request: Request, cfg: GovernorSettings) -> Principal | None:
    """Return the authenticated principal for a request, if any.

    Args:
        request: Incoming request.
        cfg: Governor settings naming the gateway headers.

    Returns:
        Principal from request state, else from gateway headers, else None.
    """

    principal = getattr(request.state, "principal", None)
    if isinstance(principal, Principal):
        return principal

    principal_id = request.headers.get(cfg.identity_header, "").strip()
    if not principal_id:
        return None

    role = request.headers.get(cfg.role_header, "").strip().lower() or None
    return Principal(id=principal_id, role=role)


async def require_admin(request: Request) -> Principal:
    """FastAPI dependency restricting a route to the administrative role.

    Raises:
        AuthenticationAppError: If the caller is anonymous or not an admin.
    """

    cfg: GovernorSettings = request.app.state.settings.governor
    principal = resolve_principal(request, cfg)

    if principal is None or principal.role != cfg.admin_role:
        logger.warning(
            "auth.admin_required",
            extra={
                "principal_present": principal is not None,
                "principal_hash": hash_identity(principal.id) if principal else None,
                "path": request.url.path,
            },
        )
        raise AuthenticationAppError(
            code="admin_required",
            message="This operation requires the administrator role",
        )

    return principal
