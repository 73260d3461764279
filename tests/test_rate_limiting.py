"""Tests for the sliding-window rate limiter and its route integration."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Response

from wessley.service.rate_limit import (
    LIMITER_SPECS,
    MemoryWindowBackend,
    RateLimitExceeded,
    RateLimitResult,
    SlidingWindowLimiter,
    apply_rate_limit_headers,
    build_limiters,
    check_rate_limit,
    enforce_rate_limit,
    get_rate_limit_identifier,
    rate_limited_response,
)
from wessley.service.runtime import get_runtime
from wessley.storage.redis_cache import RedisCache


class TestSlidingWindowLimiter:
    """Counting behaviour of the in-memory window."""

    async def test_allows_up_to_limit_then_blocks(self):
        limiter = SlidingWindowLimiter("test", 3, 60, MemoryWindowBackend())

        results = [await limiter.limit("user:1") for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results[:3]] == [2, 1, 0]
        assert results[-1].remaining == 0
        assert all(r.limit == 3 for r in results)

    async def test_identifiers_are_counted_separately(self):
        limiter = SlidingWindowLimiter("test", 1, 60, MemoryWindowBackend())

        assert (await limiter.limit("user:a")).success is True
        assert (await limiter.limit("user:b")).success is True
        assert (await limiter.limit("user:a")).success is False

    async def test_reset_is_in_the_future(self):
        limiter = SlidingWindowLimiter("test", 2, 60, MemoryWindowBackend())
        with patch("wessley.service.rate_limit._now_ms", return_value=1_000_000):
            result = await limiter.limit("user:1")
        assert result.reset == 1_000_000 + 60_000


class TestBuildLimiters:
    """Named limiter construction."""

    def test_without_cache_every_limiter_is_unconfigured(self):
        limiters = build_limiters(None)
        assert set(limiters) == set(LIMITER_SPECS)
        assert all(limiter is None for limiter in limiters.values())

    def test_explicit_backend_configures_specs(self):
        limiters = build_limiters(backend=MemoryWindowBackend())
        assert limiters["chat"].max_requests == 60
        assert limiters["ingest"].window_seconds == 3600
        assert limiters["netlistify"].max_requests == 30
        assert limiters["waitlist"].max_requests == 5

    def test_cache_gets_redis_backend(self):
        cache = MagicMock()
        limiters = build_limiters(cache)
        assert limiters["chat"].backend.cache is cache

    async def test_redis_key_carries_one_prefix(self):
        cache = MagicMock()
        cache.sliding_window = AsyncMock(return_value=(True, 1, 0))
        await build_limiters(cache)["chat"].limit("ip:203.0.113.5")
        prefix, identifier = cache.sliding_window.await_args.args[:2]
        key = RedisCache._normalize_rate_key(prefix, identifier)
        assert key.startswith("ratelimit:chat:")
        assert key.count("ratelimit:") == 1


class TestUnconfiguredPolicy:
    """A missing limiter fails closed in production and open elsewhere."""

    async def test_production_fails_closed(self):
        result = await check_rate_limit(None, "user:1", production=True)
        assert result.success is False
        assert result.limit == 0

    async def test_development_fails_open(self):
        result = await check_rate_limit(None, "user:1", production=False)
        assert result.success is True
        assert result.limit == -1

    async def test_enforce_raises_in_production(self):
        settings = get_runtime().settings
        with patch.object(type(settings), "is_production", new=True):
            with pytest.raises(RateLimitExceeded):
                await enforce_rate_limit(None, "user:1")

    async def test_development_pass_through_sets_no_headers(self):
        response = Response()
        await enforce_rate_limit(None, "user:1", response)
        assert "X-RateLimit-Limit" not in response.headers


class TestHeadersAndIdentifiers:
    """Response decoration and caller identification."""

    def test_apply_headers(self):
        response = Response()
        apply_rate_limit_headers(
            response, RateLimitResult(success=True, limit=10, remaining=7, reset=123)
        )
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "7"
        assert response.headers["X-RateLimit-Reset"] == "123"

    def test_rate_limited_response_body(self):
        with patch("wessley.service.rate_limit._now_ms", return_value=0):
            response = rate_limited_response(
                RateLimitResult(success=False, limit=5, remaining=0, reset=30_500)
            )
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "31"
        assert b'"error":"rate_limited"' in response.body

    def test_identifier_prefers_user(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "1.2.3.4"}
        assert get_rate_limit_identifier(request, "abc") == "user:abc"

    def test_identifier_uses_first_forwarded_ip(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "1.2.3.4, 10.0.0.1"}
        assert get_rate_limit_identifier(request) == "ip:1.2.3.4"

    def test_identifier_falls_back_to_real_ip_then_anonymous(self):
        request = MagicMock()
        request.headers = {"x-real-ip": "5.6.7.8"}
        assert get_rate_limit_identifier(request) == "ip:5.6.7.8"
        request.headers = {}
        assert get_rate_limit_identifier(request) == "ip:anonymous"


class TestRouteRateLimits:
    """Limits applied by the HTTP routes."""

    def test_waitlist_blocks_after_five_requests(self, client):
        get_runtime().limiters = build_limiters(backend=MemoryWindowBackend())
        headers = {"X-Forwarded-For": "9.9.9.9"}

        statuses = [
            client.post("/api/waitlist", json={"email": "a@example.com"}, headers=headers).status_code
            for _ in range(5)
        ]
        blocked = client.post("/api/waitlist", json={"email": "a@example.com"}, headers=headers)

        # Beehiiv is unconfigured in tests, so allowed requests answer 503
        assert statuses == [503] * 5
        assert blocked.status_code == 429
        body = blocked.json()
        assert body["error"] == "rate_limited"
        assert body["message"] == "Too many requests. Please try again later."
        assert "Retry-After" in blocked.headers
        assert blocked.headers["X-RateLimit-Remaining"] == "0"

    def test_production_without_redis_rejects(self, client):
        settings = get_runtime().settings
        with patch.object(type(settings), "is_production", new=True):
            response = client.post("/api/waitlist", json={"email": "a@example.com"})
        assert response.status_code == 429
