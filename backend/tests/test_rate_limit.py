import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from contact_api.utils import rate_limit
from contact_api.utils.rate_limit import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    get_client_ip,
    start_rate_limit_sweeper,
)


def test_admits_up_to_max_then_rejects(rate_limiter):
    remaining = [rate_limiter.check_and_admit("203.0.113.7").remaining for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    decision = rate_limiter.check_and_admit("203.0.113.7")
    assert decision.admitted is False
    assert decision.remaining == 0
    assert decision.retry_after_seconds == 3600


def test_retry_after_rounds_up(rate_limiter, clock):
    for _ in range(5):
        rate_limiter.check_and_admit("203.0.113.7")

    clock.advance(1800.2)
    decision = rate_limiter.check_and_admit("203.0.113.7")
    assert decision.admitted is False
    assert decision.retry_after_seconds == 1800


def test_reset_at_is_wall_clock(rate_limiter):
    decision = rate_limiter.check_and_admit("203.0.113.7")
    assert decision.reset_at == pytest.approx(1_700_000_000.0 + 3600)


def test_addresses_are_independent(rate_limiter):
    for _ in range(6):
        rate_limiter.check_and_admit("198.51.100.1")

    decision = rate_limiter.check_and_admit("198.51.100.2")
    assert decision.admitted is True
    assert decision.remaining == 4


def test_window_expiry_starts_fresh_window(rate_limiter, clock):
    for _ in range(6):
        rate_limiter.check_and_admit("203.0.113.7")

    clock.advance(3600)
    decision = rate_limiter.check_and_admit("203.0.113.7")
    assert decision.admitted is True
    assert decision.remaining == 4
    assert rate_limiter.admitted_count("203.0.113.7") == 1


def test_admitted_count_is_zero_for_unknown_address(rate_limiter):
    assert rate_limiter.admitted_count("192.0.2.55") == 0


def test_concurrent_checks_never_over_admit():
    limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=3600)
    barrier = threading.Barrier(20)

    def _hit(_):
        barrier.wait()
        return limiter.check_and_admit("203.0.113.7").admitted

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(_hit, range(20)))

    assert results.count(True) == 5
    assert results.count(False) == 15


@pytest.mark.parametrize("max_requests,window_seconds", [(0, 60), (5, 0), (-1, 60)])
def test_rejects_non_positive_policy(max_requests, window_seconds):
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(max_requests=max_requests, window_seconds=window_seconds)


# ── Sweeping ──────────────────────────────────────────────


def test_sweep_removes_only_expired_entries(clock):
    store = InMemoryRateLimitStore(prune_interval_seconds=10_000)
    limiter = FixedWindowRateLimiter(store, max_requests=5, window_seconds=60, clock=clock)
    limiter.check_and_admit("198.51.100.1")
    clock.advance(30)
    limiter.check_and_admit("198.51.100.2")

    clock.advance(31)
    assert limiter.sweep() == 1
    assert len(store) == 1
    assert limiter.admitted_count("198.51.100.2") == 1


def test_lazy_prune_on_interval(clock):
    store = InMemoryRateLimitStore(prune_interval_seconds=1)
    limiter = FixedWindowRateLimiter(store, max_requests=1, window_seconds=60, clock=clock)

    for i in range(200):
        assert limiter.check_and_admit(f"10.0.{i // 250}.{i % 250}").admitted is True
    assert len(store) == 200

    clock.advance(120)
    limiter.check_and_admit("192.0.2.1")
    assert len(store) == 1


def test_lazy_prune_when_bucket_cap_exceeded(clock):
    store = InMemoryRateLimitStore(max_buckets=10, prune_interval_seconds=10_000)
    limiter = FixedWindowRateLimiter(store, max_requests=1, window_seconds=60, clock=clock)
    for i in range(11):
        limiter.check_and_admit(f"10.0.0.{i}")
    assert len(store) == 11

    clock.advance(61)
    limiter.check_and_admit("192.0.2.1")
    assert len(store) == 1


def test_reset_clears_all_counters(rate_limiter):
    rate_limiter.check_and_admit("203.0.113.7")
    rate_limiter.reset()
    assert rate_limiter.admitted_count("203.0.113.7") == 0


@pytest.mark.asyncio
async def test_sweeper_task_sweeps_until_cancelled(monkeypatch):
    calls = {"sweep": 0, "sleep": []}

    class _Limiter:
        def sweep(self):
            calls["sweep"] += 1
            return 3

    real_sleep = asyncio.sleep

    async def fake_sleep(seconds):
        calls["sleep"].append(seconds)
        if len(calls["sleep"]) >= 3:
            raise asyncio.CancelledError()
        await real_sleep(0)

    monkeypatch.setattr(rate_limit.asyncio, "sleep", fake_sleep)

    task = start_rate_limit_sweeper(_Limiter(), interval_seconds=1)
    with pytest.raises(asyncio.CancelledError):
        await task

    # Interval is clamped to the 5 second floor.
    assert calls["sleep"] == [5, 5, 5]
    assert calls["sweep"] == 2


# ── Client address ──────────────────────────────────────────────


def _request(peer_ip, headers=None):
    return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=peer_ip))


def test_client_ip_ignores_forwarded_headers_from_untrusted_peer():
    req = _request("198.51.100.15", {"x-forwarded-for": "1.2.3.4", "x-real-ip": "5.6.7.8"})
    assert get_client_ip(req, trusted_proxy_cidrs=["10.0.0.0/8"]) == "198.51.100.15"


def test_client_ip_prefers_real_ip_from_trusted_proxy():
    req = _request("10.1.2.3", {"x-real-ip": " 5.6.7.8 ", "x-forwarded-for": "1.2.3.4"})
    assert get_client_ip(req, trusted_proxy_cidrs=["10.0.0.0/8"]) == "5.6.7.8"


def test_client_ip_uses_rightmost_forwarded_for_from_trusted_proxy():
    req = _request("10.1.2.3", {"x-forwarded-for": "6.6.6.6, 1.2.3.4"})
    assert get_client_ip(req, trusted_proxy_cidrs=["10.0.0.0/8"]) == "1.2.3.4"


def test_client_ip_without_peer():
    req = SimpleNamespace(headers={}, client=None)
    assert get_client_ip(req, trusted_proxy_cidrs=[]) is None
