# tests/test_rate_limit.py — Sliding-window limiter
import time

import pytest
from httpx import AsyncClient

import rate_limit
from rate_limit import RateLimiter
from tests.conftest import get_auth_headers


def test_allows_up_to_limit_within_window():
    limiter = RateLimiter(window_ms=10_000, max_requests=2)
    assert limiter.allow("1.2.3.4")
    assert limiter.allow("1.2.3.4")
    assert not limiter.allow("1.2.3.4")


def test_clients_are_tracked_separately():
    limiter = RateLimiter(window_ms=10_000, max_requests=1)
    assert limiter.allow("a")
    assert limiter.allow("b")
    assert not limiter.allow("a")


def test_window_expiry_frees_slot():
    limiter = RateLimiter(window_ms=50, max_requests=1)
    assert limiter.allow("a")
    assert not limiter.allow("a")
    time.sleep(0.06)
    assert limiter.allow("a")


def test_idle_clients_are_forgotten():
    limiter = RateLimiter(window_ms=50, max_requests=1)
    assert limiter.allow("a")
    assert limiter.allow("b")
    assert limiter.tracked_clients() == 2

    time.sleep(0.06)
    assert limiter.allow("c")
    assert limiter.tracked_clients() == 1


@pytest.mark.asyncio
async def test_limiter_rejects_burst_when_enabled(client: AsyncClient, test_user, monkeypatch):
    """Second mutation inside the window gets 429"""
    monkeypatch.setattr(rate_limit, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(rate_limit, "mutation_limiter", RateLimiter(window_ms=60_000, max_requests=1))
    headers = get_auth_headers(test_user)

    first = await client.post("/planets", json={"name": "A", "description": "a"}, headers=headers)
    second = await client.post("/planets", json={"name": "B", "description": "b"}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 429


@pytest.mark.asyncio
async def test_limiter_disabled_in_test_environment(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    for i in range(3):
        resp = await client.post("/planets", json={"name": f"P{i}", "description": "d"}, headers=headers)
        assert resp.status_code == 201
