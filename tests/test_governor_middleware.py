"""End-to-end tests of the governor middleware through the HTTP stack."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.testclient import TestClient

from governor.adapters.store.local import LocalKVStore
from governor.core.app_factory import create_app
from governor.core.auth import Principal
from governor.core.config import RateLimitSettings, Settings
from governor.core.middleware import mark_mutated

ALICE = {"X-Principal-Id": "alice", "X-Principal-Role": "donor"}
BOB = {"X-Principal-Id": "bob", "X-Principal-Role": "volunteer"}
ADMIN = {"X-Principal-Id": "root", "X-Principal-Role": "admin"}


def _build_app(cfg: Settings | None = None) -> FastAPI:
    app = create_app(cfg or Settings(), store=LocalKVStore())
    app.state.calls = 0

    def _count() -> int:
        app.state.calls += 1
        return app.state.calls

    @app.get("/api/donations")
    async def list_donations() -> dict:
        return {"items": [{"id": 1, "amount": 25}], "call": _count()}

    @app.post("/api/donations", status_code=201)
    async def create_donation(request: Request) -> dict:
        mark_mutated(request, "donations")
        return {"id": 2}

    @app.get("/api/dashboard")
    async def dashboard() -> dict:
        return {"call": _count()}

    @app.get("/api/missing")
    async def missing() -> dict:
        _count()
        raise HTTPException(status_code=404, detail="not found")

    @app.post("/api/auth/login")
    async def login() -> dict:
        return {"token": "t"}

    @app.get("/api/funding")
    async def list_funding() -> dict:
        return {"call": _count()}

    @app.post("/api/payments/webhook")
    async def payment_webhook(request: Request) -> dict:
        mark_mutated(request, "funding")
        return {"received": True}

    @app.get("/api/users/me/session")
    async def session() -> Response:
        response = Response(content=b"{}", media_type="application/json")
        response.set_cookie("a", "1")
        response.set_cookie("b", "2")
        return response

    @app.get("/api/posts")
    async def posts() -> Response:
        return Response(content=b"plain text", media_type="text/plain")

    return app


@pytest.fixture
def app() -> FastAPI:
    return _build_app()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def test_second_get_is_served_from_cache(client: TestClient, app: FastAPI) -> None:
    first = client.get("/api/donations?page=1")
    second = client.get("/api/donations?page=1")

    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert second.status_code == 200
    assert second.content == first.content
    assert second.headers["content-type"] == "application/json"
    assert app.state.calls == 1


def test_cached_non_json_body_is_byte_identical(client: TestClient) -> None:
    client.get("/api/posts")
    hit = client.get("/api/posts")

    assert hit.headers["X-Cache"] == "HIT"
    assert hit.content == b"plain text"
    assert hit.headers["content-type"].startswith("text/plain")


def test_query_changes_the_cache_entry(client: TestClient) -> None:
    client.get("/api/donations?page=1")

    assert client.get("/api/donations?page=2").headers["X-Cache"] == "MISS"


def test_successful_mutation_invalidates_reads(client: TestClient, app: FastAPI) -> None:
    client.get("/api/donations")
    created = client.post("/api/donations", json={"amount": 10})
    after = client.get("/api/donations")

    assert created.status_code == 201
    assert created.headers["X-Cache"] == "INVALIDATED"
    assert after.headers["X-Cache"] == "MISS"
    assert after.json()["call"] == 2


def test_entries_are_scoped_per_identity(client: TestClient) -> None:
    assert client.get("/api/donations", headers=ALICE).headers["X-Cache"] == "MISS"
    assert client.get("/api/donations", headers=BOB).headers["X-Cache"] == "MISS"
    assert client.get("/api/donations", headers=ALICE).headers["X-Cache"] == "HIT"


def test_personalized_route_is_never_cached(client: TestClient, app: FastAPI) -> None:
    first = client.get("/api/dashboard", headers=ALICE)
    second = client.get("/api/dashboard", headers=ALICE)

    assert first.headers["X-Cache"] == "SKIP"
    assert second.headers["X-Cache"] == "SKIP"
    assert app.state.calls == 2


def test_error_responses_are_not_cached(client: TestClient, app: FastAPI) -> None:
    assert client.get("/api/missing").status_code == 404
    second = client.get("/api/missing")

    assert second.status_code == 404
    assert second.headers["X-Cache"] == "MISS"
    assert app.state.calls == 2


def test_login_quota_returns_429(client: TestClient) -> None:
    for _ in range(5):
        assert client.post("/api/auth/login").status_code == 200

    denied = client.post("/api/auth/login")

    assert denied.status_code == 429
    body = denied.json()
    assert body["success"] is False
    assert body["message"].startswith("Too many login attempts")
    assert body["retryAfter"] > 0
    assert denied.headers["Retry-After"] == str(body["retryAfter"])
    assert denied.headers["X-RateLimit-Remaining"] == "0"


def test_rate_limit_headers_follow_role(client: TestClient) -> None:
    anonymous = client.get("/api/donations")
    donor = client.get("/api/donations", headers=ALICE)
    admin = client.get("/api/donations", headers=ADMIN)

    assert anonymous.headers["X-RateLimit-Limit"] == "50"
    assert anonymous.headers["X-RateLimit-Remaining"] == "49"
    assert donor.headers["X-RateLimit-Limit"] == "100"
    assert admin.headers["X-RateLimit-Limit"] == "500"
    assert "Retry-After" not in admin.headers


def test_cache_hits_still_consume_quota(client: TestClient) -> None:
    client.get("/api/donations")
    hit = client.get("/api/donations")

    assert hit.headers["X-Cache"] == "HIT"
    assert hit.headers["X-RateLimit-Remaining"] == "48"


def test_exempt_path_skips_quota_and_cache(client: TestClient) -> None:
    first = client.get("/health")
    second = client.get("/health")

    assert first.status_code == 200
    assert "X-RateLimit-Limit" not in second.headers
    assert second.headers["X-Cache"] == "SKIP"


def test_exempt_webhook_mutation_invalidates_reads(client: TestClient, app: FastAPI) -> None:
    client.get("/api/funding")
    assert client.get("/api/funding").headers["X-Cache"] == "HIT"

    webhook = client.post("/api/payments/webhook", json={"event": "charge.succeeded"})
    after = client.get("/api/funding")

    assert webhook.status_code == 200
    assert "X-RateLimit-Limit" not in webhook.headers
    assert webhook.headers["X-Cache"] == "INVALIDATED"
    assert after.headers["X-Cache"] == "MISS"
    assert after.json()["call"] == 2


def test_repeated_response_headers_are_preserved(client: TestClient) -> None:
    response = client.get("/api/users/me/session", headers=ALICE)

    cookies = response.headers.get_list("set-cookie")
    assert [cookie.split(";")[0] for cookie in cookies] == ["a=1", "b=2"]
    assert response.headers["X-Cache"] == "SKIP"
    assert response.headers["content-length"] == str(len(response.content))


def test_headers_can_be_disabled() -> None:
    client = TestClient(_build_app(Settings(rate_limit=RateLimitSettings(include_headers=False))))

    response = client.get("/api/donations")

    assert response.headers["X-Cache"] == "MISS"
    assert "X-RateLimit-Limit" not in response.headers


def test_principal_from_request_state_takes_precedence() -> None:
    app = _build_app()

    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        request.state.principal = Principal(id="svc", role="admin")
        return await call_next(request)

    response = TestClient(app).get("/api/donations", headers=ALICE)

    assert response.headers["X-RateLimit-Limit"] == "500"
