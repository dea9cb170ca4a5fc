"""Unit tests for principal resolution and the admin guard."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from starlette.datastructures import Headers

from governor.core.auth import Principal, require_admin, resolve_principal
from governor.core.config import GovernorSettings, Settings
from governor.core.errors import AuthenticationAppError


def _request(headers: dict | None = None, principal: Principal | None = None) -> MagicMock:
    request = MagicMock()
    request.headers = Headers(headers or {})
    request.state = SimpleNamespace(principal=principal) if principal else SimpleNamespace()
    request.app.state.settings = Settings()
    request.url.path = "/api/cache/flush"
    return request


class TestResolvePrincipal:
    def test_anonymous_without_headers(self) -> None:
        assert resolve_principal(_request(), GovernorSettings()) is None

    def test_reads_gateway_headers(self) -> None:
        request = _request({"X-Principal-Id": "u-9", "X-Principal-Role": "Volunteer"})

        assert resolve_principal(request, GovernorSettings()) == Principal(id="u-9", role="volunteer")

    def test_role_is_optional(self) -> None:
        request = _request({"X-Principal-Id": "u-9"})

        assert resolve_principal(request, GovernorSettings()) == Principal(id="u-9", role=None)

    def test_request_state_wins_over_headers(self) -> None:
        request = _request({"X-Principal-Id": "spoofed"}, principal=Principal(id="real", role="donor"))

        assert resolve_principal(request, GovernorSettings()).id == "real"

    def test_custom_header_names(self) -> None:
        cfg = GovernorSettings(identity_header="X-User", role_header="X-Role")
        request = _request({"X-User": "u1", "X-Role": "admin"})

        assert resolve_principal(request, cfg) == Principal(id="u1", role="admin")


class TestRequireAdmin:
    @pytest.mark.asyncio
    async def test_admin_is_allowed(self) -> None:
        request = _request({"X-Principal-Id": "root", "X-Principal-Role": "admin"})

        assert (await require_admin(request)).id == "root"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"X-Principal-Id": "u1", "X-Principal-Role": "user"},
            {"X-Principal-Id": "u1"},
        ],
    )
    async def test_non_admin_is_rejected(self, headers: dict) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            await require_admin(_request(headers))

        assert exc_info.value.code == "admin_required"
