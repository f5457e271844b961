"""
Force-refresh rate limiting.

Sliding-window counter per client identity with a small burst allowance on top
of the steady limit. Counters live in an injectable store: in-process for a
single API replica, Redis when several replicas share one allowance.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from fastapi import Request
from redis.asyncio import Redis

from shared.config import RateLimitBackend, Settings, get_settings
from shared.errors import RateLimited
from shared.utils.logging import get_logger
from shared.utils.metrics import FORCE_REFRESH_REJECTED

logger = get_logger(__name__)

RATE_LIMIT_KEY = "ratelimit:refresh:{identity}"


class RateLimitStore(Protocol):
    async def hit(self, identity: str, now: float, window_s: float, cap: int) -> Optional[float]:
        """Record one request. Returns None when allowed, else seconds until a slot frees."""
        ...

    async def close(self) -> None:
        ...


class InMemoryRateLimitStore:
    """One timestamp deque per identity; entries expire by timestamp comparison."""

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, identity: str, now: float, window_s: float, cap: int) -> Optional[float]:
        async with self._lock:
            window = self._hits.setdefault(identity, deque())
            while window and window[0] <= now - window_s:
                window.popleft()
            if len(window) >= cap:
                return max(0.0, window[0] + window_s - now)
            window.append(now)
            return None

    def reset(self) -> None:
        self._hits.clear()

    async def close(self) -> None:
        self.reset()


class RedisRateLimitStore:
    """Sorted set per identity, trimmed and counted atomically in Lua."""

    _HIT_SCRIPT = """
redis.call("ZREMRANGEBYSCORE", KEYS[1], "-inf", tonumber(ARGV[1]) - tonumber(ARGV[2]))
if redis.call("ZCARD", KEYS[1]) < tonumber(ARGV[3]) then
    redis.call("ZADD", KEYS[1], ARGV[1], ARGV[4])
    redis.call("PEXPIRE", KEYS[1], math.ceil(tonumber(ARGV[2]) * 1000))
    return "-1"
end
local oldest = redis.call("ZRANGE", KEYS[1], 0, 0, "WITHSCORES")
return tostring(tonumber(oldest[2]) + tonumber(ARGV[2]) - tonumber(ARGV[1]))
"""

    def __init__(self, url: str, client: Redis | None = None) -> None:
        self._url = url
        self._client = client

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )
        return self._client

    async def hit(self, identity: str, now: float, window_s: float, cap: int) -> Optional[float]:
        key = RATE_LIMIT_KEY.format(identity=identity)
        result = await self.client.eval(
            self._HIT_SCRIPT, 1, key, repr(now), repr(window_s), str(cap), uuid.uuid4().hex
        )
        retry_after = float(result)
        return None if retry_after < 0 else max(0.0, retry_after)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SlidingWindowLimiter:
    """
    Allows `limit + burst` requests per identity within any `window_s` span.

    The burst is a fixed extra allowance, not a separate token bucket: a
    spent burst request comes back when it slides out of the window, at the
    same pace as the regular ones.

    Raises RateLimited once the allowance is spent; the error carries the
    seconds until the oldest counted request leaves the window.
    """

    def __init__(
        self,
        limit: int,
        window_s: float,
        burst: int = 0,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.burst = max(0, burst)
        self.window_s = window_s
        self.store: RateLimitStore = store or InMemoryRateLimitStore()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SlidingWindowLimiter":
        settings = settings or get_settings()
        store: RateLimitStore
        if settings.rate_limit_backend == RateLimitBackend.REDIS:
            store = RedisRateLimitStore(settings.redis_url)
        else:
            store = InMemoryRateLimitStore()
        return cls(
            limit=settings.force_refresh_limit,
            window_s=settings.force_refresh_window_s,
            burst=settings.force_refresh_burst,
            store=store,
        )

    @property
    def capacity(self) -> int:
        return self.limit + self.burst

    async def hit(self, identity: str) -> None:
        retry_after = await self.store.hit(identity, self._clock(), self.window_s, self.capacity)
        if retry_after is not None:
            FORCE_REFRESH_REJECTED.inc()
            logger.warning("force_refresh_rate_limited", identity=identity, retry_after_s=round(retry_after, 1))
            raise RateLimited(identity, retry_after)

    async def close(self) -> None:
        await self.store.close()


def client_identity(request: Request) -> str:
    """API key when presented, otherwise the client address."""
    api_key = request.headers.get("x-api-key")
    if api_key:
        return f"key:{api_key}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"
