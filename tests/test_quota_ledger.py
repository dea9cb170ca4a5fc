"""Unit tests for fixed-window and points quota accounting."""

from unittest.mock import AsyncMock, Mock

import pytest

from governor.adapters.store.base import AbstractKVStore
from governor.adapters.store.local import LocalKVStore
from governor.core.errors import StoreUnavailableError
from governor.quota.ledger import QuotaLedger
from governor.quota.policies import KeyStrategy, QuotaAlgorithm, QuotaPolicy, RoleLimits

WINDOW = QuotaPolicy(name="search", limit=5, window_seconds=60)
POINTS = QuotaPolicy(
    name="donation_request",
    limit=10,
    window_seconds=3600,
    algorithm=QuotaAlgorithm.POINTS,
    key_strategy=KeyStrategy.IDENTITY,
)
TIERED = QuotaPolicy(
    name="api",
    limit=RoleLimits.from_mapping({"admin": 500, "donor": 100}, anonymous=50, default=40),
    window_seconds=900,
)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def ledger(clock: Mock) -> QuotaLedger:
    return QuotaLedger(LocalKVStore(), clock=clock)


@pytest.mark.asyncio
async def test_fixed_window_counts_down_then_denies(ledger: QuotaLedger) -> None:
    remaining = [(await ledger.consume(WINDOW, "ip:1.2.3.4")).remaining for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    denied = await ledger.consume(WINDOW, "ip:1.2.3.4")
    assert denied.allowed is False
    assert denied.remaining == 0
    assert 0 < denied.retry_after_seconds <= 60
    assert denied.headers()["Retry-After"] == str(denied.retry_after_seconds)
    assert ledger.denials == {"search": 1}


@pytest.mark.asyncio
async def test_fixed_window_resets_on_next_window(ledger: QuotaLedger, clock: Mock) -> None:
    for _ in range(6):
        await ledger.consume(WINDOW, "ip:1.2.3.4")

    # Window index is floor(now / 60); 1000 falls in [960, 1020)
    clock.return_value = 1020.0
    decision = await ledger.consume(WINDOW, "ip:1.2.3.4")

    assert decision.allowed is True
    assert decision.remaining == 4
    assert decision.reset_at == 1080


@pytest.mark.asyncio
async def test_identities_are_isolated(ledger: QuotaLedger) -> None:
    for _ in range(5):
        await ledger.consume(WINDOW, "ip:10.0.0.1")

    assert (await ledger.consume(WINDOW, "ip:10.0.0.1")).allowed is False
    assert (await ledger.consume(WINDOW, "ip:10.0.0.2")).allowed is True


@pytest.mark.asyncio
async def test_points_rejection_leaves_budget_unchanged(ledger: QuotaLedger) -> None:
    first = await ledger.consume(POINTS, "user:u1", cost=4)
    second = await ledger.consume(POINTS, "user:u1", cost=4)
    rejected = await ledger.consume(POINTS, "user:u1", cost=4)
    last = await ledger.consume(POINTS, "user:u1", cost=2)

    assert (first.remaining, second.remaining) == (6, 2)
    assert rejected.allowed is False
    assert rejected.consumed == 8
    assert 0 < rejected.retry_after_seconds <= 3600
    assert last.allowed is True
    assert last.remaining == 0


@pytest.mark.asyncio
async def test_role_aware_limits(ledger: QuotaLedger) -> None:
    admin = await ledger.consume(TIERED, "user:a", role="admin", authenticated=True)
    donor = await ledger.consume(TIERED, "user:d", role="donor", authenticated=True)
    unknown = await ledger.consume(TIERED, "user:x", role="stranger", authenticated=True)
    anonymous = await ledger.consume(TIERED, "ip:1.1.1.1", role="admin", authenticated=False)

    assert (admin.limit, donor.limit, unknown.limit, anonymous.limit) == (500, 100, 40, 50)


@pytest.mark.asyncio
async def test_usage_does_not_consume(ledger: QuotaLedger) -> None:
    await ledger.consume(WINDOW, "ip:1.2.3.4")
    await ledger.consume(WINDOW, "ip:1.2.3.4")

    snapshot = await ledger.usage(WINDOW, "ip:1.2.3.4")
    again = await ledger.usage(WINDOW, "ip:1.2.3.4")

    assert snapshot.consumed == 2
    assert snapshot.remaining == 3
    assert again.consumed == 2


@pytest.mark.asyncio
async def test_reset_forgets_current_window(ledger: QuotaLedger) -> None:
    for _ in range(6):
        await ledger.consume(WINDOW, "ip:1.2.3.4")

    await ledger.reset(WINDOW, "ip:1.2.3.4")

    assert (await ledger.consume(WINDOW, "ip:1.2.3.4")).remaining == 4


@pytest.mark.asyncio
async def test_store_outage_fails_open(clock: Mock) -> None:
    store = AsyncMock(spec=AbstractKVStore)
    outage = StoreUnavailableError(code="store_unavailable", message="down")
    store.incr.side_effect = outage
    store.increment_within.side_effect = outage
    store.get.side_effect = outage
    store.ttl.side_effect = outage
    store.delete.side_effect = outage
    ledger = QuotaLedger(store, clock=clock)

    window = await ledger.consume(WINDOW, "ip:1.2.3.4")
    points = await ledger.consume(POINTS, "user:u1", cost=3)
    window_usage = await ledger.usage(WINDOW, "ip:1.2.3.4")
    points_usage = await ledger.usage(POINTS, "user:u1")
    await ledger.reset(WINDOW, "ip:1.2.3.4")

    assert window.allowed is True
    assert window.remaining == 5
    assert points.allowed is True
    assert window_usage.allowed is True
    assert window_usage.remaining == 5
    assert points_usage.remaining == 10
    assert ledger.denials == {}
    store.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_invalid_consume_args(ledger: QuotaLedger) -> None:
    with pytest.raises(ValueError):
        await ledger.consume(WINDOW, "")

    with pytest.raises(ValueError):
        await ledger.consume(WINDOW, "ip:1.2.3.4", cost=0)


@pytest.mark.asyncio
async def test_points_budget_is_exact(ledger: QuotaLedger) -> None:
    for _ in range(10):
        assert (await ledger.consume(POINTS, "user:u2")).allowed is True

    eleventh = await ledger.consume(POINTS, "user:u2")
    snapshot = await ledger.usage(POINTS, "user:u2")

    assert eleventh.allowed is False
    assert snapshot.consumed == 10
    assert snapshot.remaining == 0
