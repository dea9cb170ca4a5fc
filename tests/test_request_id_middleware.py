from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from governor.adapters.store.local import LocalKVStore
from governor.core.app_factory import create_app
from governor.core.config import Settings


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(Settings(), store=LocalKVStore()))


def test_preserves_incoming_request_id_header(client: TestClient):
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client: TestClient):
    resp = client.get("/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_request_id_is_set_on_denials(client: TestClient):
    for _ in range(5):
        client.post("/api/auth/login")

    resp = client.post("/api/auth/login", headers={"X-Request-ID": "deny-1"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "deny-1"
