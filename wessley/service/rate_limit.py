from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from wessley.config import get_settings
from wessley.logging import get_correlation_id, get_logger

logger = get_logger(__name__)

# name -> (requests, window seconds)
LIMITER_SPECS: Dict[str, Tuple[int, int]] = {
    "chat": (60, 60),
    "ingest": (10, 60 * 60),
    "netlistify": (30, 60),
    "waitlist": (5, 60),
}

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one limiter check. ``reset`` is epoch milliseconds."""

    success: bool
    limit: int
    remaining: int
    reset: int


class RateLimitExceeded(Exception):
    """Raised by route helpers so the app can answer with a 429."""

    def __init__(self, result: RateLimitResult):
        super().__init__(RATE_LIMITED_MESSAGE)
        self.result = result


class RedisWindowBackend:
    """Sliding window stored in a Redis sorted set."""

    def __init__(self, cache) -> None:
        self.cache = cache

    async def hit(
        self, prefix: str, identifier: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        return await self.cache.sliding_window(prefix, identifier, limit, window_seconds)


class MemoryWindowBackend:
    """Per-process sliding window log, used for local runs and tests."""

    def __init__(self) -> None:
        self._hits: Dict[str, Deque[int]] = {}
        self._lock = threading.Lock()

    async def hit(
        self, prefix: str, identifier: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        now = _now_ms()
        window_ms = window_seconds * 1000
        key = f"{prefix}:{identifier}"
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window_ms:
                hits.popleft()
            reset = (hits[0] + window_ms) if hits else now + window_ms
            if len(hits) >= limit:
                return False, len(hits), reset
            hits.append(now)
            return True, len(hits), reset


class SlidingWindowLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int, backend) -> None:
        self.name = name
        self.prefix = name
        self.max_requests = limit
        self.window_seconds = window_seconds
        self.backend = backend

    async def limit(self, identifier: str) -> RateLimitResult:
        allowed, count, reset = await self.backend.hit(
            self.prefix, identifier, self.max_requests, self.window_seconds
        )
        return RateLimitResult(
            success=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset=reset,
        )


def build_limiters(cache=None, *, backend=None) -> Dict[str, Optional[SlidingWindowLimiter]]:
    """Create the named limiters.

    Without a Redis cache (and no explicit backend) every handle is ``None``
    and ``check_rate_limit`` applies the unconfigured policy.
    """

    if backend is None and cache is not None:
        backend = RedisWindowBackend(cache)
    if backend is None:
        return {name: None for name in LIMITER_SPECS}
    return {
        name: SlidingWindowLimiter(name, limit, window, backend)
        for name, (limit, window) in LIMITER_SPECS.items()
    }


async def check_rate_limit(
    limiter: Optional[SlidingWindowLimiter],
    identifier: str,
    *,
    production: Optional[bool] = None,
) -> RateLimitResult:
    """Check ``identifier`` against ``limiter``.

    An unconfigured limiter fails closed in production and open elsewhere.
    """

    if limiter is not None:
        return await limiter.limit(identifier)

    if production is None:
        production = get_settings().is_production
    if production:
        logger.error(
            "rate_limit_not_configured",
            mode="fail_closed",
            message="Rate limiting not configured in production; set REDIS_URL.",
        )
        return RateLimitResult(success=False, limit=0, remaining=0, reset=_now_ms() + 60000)

    logger.warning(
        "rate_limit_not_configured",
        mode="fail_open",
        message="Requests are not rate limited in development.",
    )
    return RateLimitResult(success=True, limit=-1, remaining=-1, reset=-1)


def get_rate_limit_identifier(request: Request, user_id: Optional[str] = None) -> str:
    if user_id:
        return f"user:{user_id}"
    forwarded_for = request.headers.get("x-forwarded-for")
    forwarded_ip = forwarded_for.split(",")[0].strip() if forwarded_for else ""
    ip = forwarded_ip or request.headers.get("x-real-ip") or "anonymous"
    return f"ip:{ip}"


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
    }


def apply_rate_limit_headers(response: Response, result: RateLimitResult) -> Response:
    # limit == -1 marks the development pass-through
    if result.limit == -1:
        return response
    for name, value in rate_limit_headers(result).items():
        response.headers[name] = value
    return response


def rate_limited_response(result: RateLimitResult) -> JSONResponse:
    retry_after = max(0, math.ceil((result.reset - _now_ms()) / 1000))
    headers = rate_limit_headers(result)
    headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "message": RATE_LIMITED_MESSAGE,
            "retry_after": retry_after,
            "request_id": get_correlation_id(),
        },
        headers=headers,
    )


async def enforce_rate_limit(
    limiter: Optional[SlidingWindowLimiter],
    identifier: str,
    response: Optional[Response] = None,
) -> RateLimitResult:
    """Check the limit, raising ``RateLimitExceeded`` or decorating ``response``."""

    result = await check_rate_limit(limiter, identifier)
    if not result.success:
        logger.info(
            "rate_limit_exceeded",
            limiter=limiter.name if limiter else None,
            identifier=identifier,
        )
        raise RateLimitExceeded(result)
    if response is not None:
        apply_rate_limit_headers(response, result)
    return result
