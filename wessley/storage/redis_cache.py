from __future__ import annotations

import hashlib
import json
import time
import uuid
from typing import Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper for rate limit windows and webhook idempotency."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Sliding window log: prune, count, then admit atomically
    _SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
local count = redis.call('ZCARD', key)
local reset = now + window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
  reset = tonumber(oldest[2]) + window
end

if count >= limit then
  return {0, count, reset}
end

redis.call('ZADD', key, now, member)
redis.call('PEXPIRE', key, window)
return {1, count + 1, reset}
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._sliding_window = self.client.register_script(self._SLIDING_WINDOW_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async client off the startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    def _normalize_rate_key(prefix: str, identifier: str) -> str:
        """Hash the identifier so user-supplied values cannot collide across limiters."""
        digest = hashlib.sha256(identifier.encode()).hexdigest()
        return f"ratelimit:{prefix}:{digest}"

    @staticmethod
    def _idempotency_key(scope: str, key: str) -> str:
        return f"idemp:{scope}:{key}"

    async def sliding_window(
        self, prefix: str, identifier: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        """Record a hit and return ``(allowed, count, reset_ms)``."""

        now_ms = int(time.time() * 1000)
        allowed, count, reset_ms = await self._sliding_window(
            keys=[self._normalize_rate_key(prefix, identifier)],
            args=[now_ms, window_seconds * 1000, limit, f"{now_ms}:{uuid.uuid4().hex}"],
        )
        return bool(int(allowed)), int(count), int(reset_ms)

    async def acquire_idempotency_slot(
        self, scope: str, key: str, record: dict, ttl_seconds: int
    ) -> tuple[bool, Optional[dict]]:
        """Atomically claim ``key`` with SET NX.

        Returns ``(acquired, existing_record)``; when the slot is already held
        the current record is returned so callers can tell in-progress work
        from a completed one.
        """

        cache_key = self._idempotency_key(scope, key)
        acquired = await self.client.set(
            cache_key, json.dumps(record), ex=ttl_seconds, nx=True
        )
        if acquired:
            return (True, None)
        existing = await self.client.get(cache_key)
        if existing:
            try:
                return (False, json.loads(existing))
            except (json.JSONDecodeError, TypeError):
                pass
        return (False, None)

    async def set_idempotency_record(
        self, scope: str, key: str, record: dict, ttl_seconds: int
    ) -> None:
        await self.client.set(
            self._idempotency_key(scope, key), json.dumps(record), ex=ttl_seconds
        )

    async def release_idempotency_slot(self, scope: str, key: str) -> None:
        await self.client.delete(self._idempotency_key(scope, key))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues in
    pytest, but exposes the same awaitable surface as RedisCache.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._sliding_window = self.client.register_script(
            RedisCache._SLIDING_WINDOW_SCRIPT
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def sliding_window(
        self, prefix: str, identifier: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        now_ms = int(time.time() * 1000)
        allowed, count, reset_ms = self._sliding_window(
            keys=[RedisCache._normalize_rate_key(prefix, identifier)],
            args=[now_ms, window_seconds * 1000, limit, f"{now_ms}:{uuid.uuid4().hex}"],
        )
        return bool(int(allowed)), int(count), int(reset_ms)

    async def acquire_idempotency_slot(
        self, scope: str, key: str, record: dict, ttl_seconds: int
    ) -> tuple[bool, Optional[dict]]:
        """Atomically claim ``key`` with SET NX (sync version)."""
        cache_key = RedisCache._idempotency_key(scope, key)
        acquired = self.client.set(cache_key, json.dumps(record), ex=ttl_seconds, nx=True)
        if acquired:
            return (True, None)
        existing = self.client.get(cache_key)
        if existing:
            try:
                return (False, json.loads(existing))
            except (json.JSONDecodeError, TypeError):
                pass
        return (False, None)

    async def set_idempotency_record(
        self, scope: str, key: str, record: dict, ttl_seconds: int
    ) -> None:
        self.client.set(
            RedisCache._idempotency_key(scope, key), json.dumps(record), ex=ttl_seconds
        )

    async def release_idempotency_slot(self, scope: str, key: str) -> None:
        self.client.delete(RedisCache._idempotency_key(scope, key))

    async def close(self) -> None:
        self.client.close()
