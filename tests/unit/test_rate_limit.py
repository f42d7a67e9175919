"""
Unit Tests for Inbound Rate Limiting

These tests verify that the fixed-window limiter:
- Never allows more than max_requests per window
- Starts a new window only once the previous one has expired
- Sweeps expired counters
- Holds its budget when many threads hit one key
- Identifies clients from proxy headers

Run with:
    pytest tests/unit/test_rate_limit.py -v
"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.rate_limit import (
    CounterEntry,
    InMemoryRateLimitStore,
    RateLimiter,
    build_rate_limit_response,
    check_rate_limit,
    get_client_identifier,
)
from core.schemas import RateLimitOptions, RateLimitResult


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeRequest:
    def __init__(self, headers):
        self.headers = headers


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


OPTIONS = RateLimitOptions(window_ms=60_000, max_requests=3)


class SlowStore(InMemoryRateLimitStore):
    """Store that yields between read and write so unsynchronized callers interleave"""

    def get(self, key):
        entry = super().get(key)
        time.sleep(0.001)
        return entry


class TestFixedWindow:
    """Tests for RateLimiter.check"""

    def test_first_request_opens_window(self, limiter, clock):
        """First request is allowed and sets reset_at one window ahead"""
        result = limiter.check("prices:get", "1.2.3.4", OPTIONS)

        assert result.allowed is True
        assert result.limit == 3
        assert result.remaining == 2
        assert result.reset_at == clock.now + 60_000
        assert result.retry_after_seconds == 60

    def test_budget_exhausted_within_window(self, limiter):
        """Requests beyond max_requests are rejected with remaining=0"""
        results = [limiter.check("prices:get", "1.2.3.4", OPTIONS) for _ in range(5)]

        assert [r.allowed for r in results] == [True, True, True, False, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0, 0]

    def test_rejection_reports_time_left(self, limiter, clock):
        """retry_after_seconds counts down to the window end, rounded up"""
        for _ in range(3):
            limiter.check("prices:get", "1.2.3.4", OPTIONS)

        clock.now += 59_500
        result = limiter.check("prices:get", "1.2.3.4", OPTIONS)

        assert result.allowed is False
        assert result.retry_after_seconds == 1

    def test_new_window_only_after_reset(self, limiter, clock):
        """The counter resets once now >= reset_at, not before"""
        for _ in range(3):
            limiter.check("prices:get", "1.2.3.4", OPTIONS)

        clock.now += 59_999
        assert limiter.check("prices:get", "1.2.3.4", OPTIONS).allowed is False

        clock.now += 1
        result = limiter.check("prices:get", "1.2.3.4", OPTIONS)
        assert result.allowed is True
        assert result.remaining == 2

    def test_scopes_and_clients_are_independent(self, limiter):
        """Counters are keyed by scope and client identifier"""
        for _ in range(3):
            limiter.check("prices:get", "1.2.3.4", OPTIONS)

        assert limiter.check("prices:get", "1.2.3.4", OPTIONS).allowed is False
        assert limiter.check("prices:post", "1.2.3.4", OPTIONS).allowed is True
        assert limiter.check("prices:get", "5.6.7.8", OPTIONS).allowed is True

    def test_single_request_budget(self, limiter):
        """max_requests=1 allows exactly one request"""
        options = RateLimitOptions(window_ms=1_000, max_requests=1)

        assert limiter.check("providers:test", "ip", options).allowed is True
        assert limiter.check("providers:test", "ip", options).allowed is False


class TestConcurrency:
    """Tests for concurrent checks on one key"""

    def test_threads_never_exceed_budget(self, clock):
        """20 threads x 5 checks against max_requests=10 admit exactly 10"""
        limiter = RateLimiter(store=SlowStore(), clock=clock)
        options = RateLimitOptions(window_ms=60_000, max_requests=10)
        start = threading.Barrier(20)

        def worker():
            start.wait()
            return [limiter.check("prices:batch", "1.2.3.4", options).allowed for _ in range(5)]

        with ThreadPoolExecutor(max_workers=20) as pool:
            futures = [pool.submit(worker) for _ in range(20)]
            decisions = [allowed for future in futures for allowed in future.result()]

        assert len(decisions) == 100
        assert decisions.count(True) == 10
        assert limiter.store.get("prices:batch:1.2.3.4").count == 10

    def test_threads_on_different_keys(self, clock):
        """Concurrent clients each get their own budget"""
        limiter = RateLimiter(store=SlowStore(), clock=clock)
        options = RateLimitOptions(window_ms=60_000, max_requests=3)

        def worker(client):
            return sum(limiter.check("prices:get", client, options).allowed for _ in range(5))

        with ThreadPoolExecutor(max_workers=8) as pool:
            allowed = list(pool.map(worker, [f"client-{i}" for i in range(8)]))

        assert allowed == [3] * 8


class TestCleanup:
    """Tests for the expired-counter sweep"""

    def test_expired_counters_are_swept(self, clock):
        """Counters past reset_at are deleted on the next sweep"""
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store=store, clock=clock, cleanup_interval_ms=1_000)

        limiter.check("prices:get", "a", RateLimitOptions(window_ms=500, max_requests=5))
        limiter.check("prices:get", "b", RateLimitOptions(window_ms=60_000, max_requests=5))
        assert len(store) == 2

        clock.now += 1_000
        limiter.check("prices:get", "c", OPTIONS)

        assert store.get("prices:get:a") is None
        assert store.get("prices:get:b") is not None
        assert store.get("prices:get:c") is not None

    def test_no_sweep_before_interval(self, clock):
        """Expired counters survive until the sweep interval has passed"""
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store=store, clock=clock, cleanup_interval_ms=10_000)

        limiter.check("prices:get", "a", RateLimitOptions(window_ms=100, max_requests=5))
        clock.now += 200
        limiter.check("prices:get", "b", OPTIONS)

        assert store.get("prices:get:a") is not None

    def test_store_is_pluggable(self, clock):
        """The limiter reads and writes counters through the injected store"""
        store = InMemoryRateLimitStore()
        store.set("prices:get:ip", CounterEntry(count=3, reset_at=clock.now + 5_000))
        limiter = RateLimiter(store=store, clock=clock)

        result = limiter.check("prices:get", "ip", OPTIONS)

        assert result.allowed is False
        assert result.retry_after_seconds == 5


class TestClientIdentifier:
    """Tests for get_client_identifier"""

    def test_first_forwarded_for_entry(self):
        headers = {"x-forwarded-for": " 10.0.0.1 , 10.0.0.2", "x-real-ip": "10.0.0.9"}
        assert get_client_identifier(headers) == "10.0.0.1"

    def test_real_ip_then_cloudflare(self):
        assert get_client_identifier({"x-real-ip": "10.0.0.9", "cf-connecting-ip": "1.1.1.1"}) == "10.0.0.9"
        assert get_client_identifier({"cf-connecting-ip": "1.1.1.1"}) == "1.1.1.1"

    def test_user_agent_fallback_truncated(self):
        """Without proxy headers the user agent prefix identifies the client"""
        identifier = get_client_identifier({"user-agent": "x" * 200})
        assert identifier == "ua:" + "x" * 80

    def test_unknown_client(self):
        assert get_client_identifier({}) == "ua:unknown"

    def test_check_rate_limit_uses_request_headers(self, limiter):
        """check_rate_limit keys counters by the request's client identifier"""
        request = FakeRequest({"x-real-ip": "9.9.9.9"})
        options = RateLimitOptions(window_ms=60_000, max_requests=1)

        assert check_rate_limit(request, "assets:price", options, limiter=limiter).allowed is True
        assert check_rate_limit(request, "assets:price", options, limiter=limiter).allowed is False
        assert limiter.store.get("assets:price:9.9.9.9") is not None


class TestRateLimitResponse:
    """Tests for build_rate_limit_response"""

    def test_429_with_headers(self):
        result = RateLimitResult(
            allowed=False, limit=60, remaining=0, reset_at=1_700_000_000_500, retry_after_seconds=12
        )

        response = build_rate_limit_response(result, "Rate limit exceeded for price lookups")

        assert response.status_code == 429
        assert json.loads(response.body) == {
            "error": "Rate limit exceeded for price lookups",
            "retryAfterSeconds": 12,
        }
        assert response.headers["Retry-After"] == "12"
        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1700000001"
