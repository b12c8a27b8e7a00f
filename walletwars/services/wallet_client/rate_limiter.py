"""Rate limiters for wallet provider requests.

Sliding window: a request is admitted when fewer than ``max_requests``
were recorded in the trailing ``window_seconds``. Callers that do not fit
wait until the oldest request leaves the window; nothing is ever dropped.

Two implementations share the same interface:
- SlidingWindowRateLimiter: in-process, for a single event loop
- RedisSlidingWindowRateLimiter: shared by every worker process
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol
from uuid import uuid4

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class RateLimiter(Protocol):
    """Interface shared by all snapshot rate limiters."""

    async def acquire(self) -> float: ...

    async def status(self) -> dict[str, Any]: ...


class SlidingWindowRateLimiter:
    """
    In-process sliding window rate limiter.

    Admission and recording happen under one asyncio.Lock, so concurrent
    callers on the same loop are serialized and can never over-admit.
    The lock is held while waiting, which keeps callers in FIFO order.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Requests allowed per window
            window_seconds: Window length in seconds
            clock: Monotonic time source
            sleep: Coroutine used to wait
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        """Drop requests that have left the window."""
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    async def acquire(self) -> float:
        """
        Wait for a free slot and record a request.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return waited

                wait_time = self._requests[0] + self.window_seconds - now
                logger.debug(
                    "rate_limited",
                    wait_time=round(wait_time, 3),
                    used=len(self._requests),
                    limit=self.max_requests,
                )
                await self._sleep(wait_time)
                waited += wait_time

    async def status(self) -> dict[str, Any]:
        """Get current usage of the window."""
        self._prune(self._clock())
        used = len(self._requests)
        return {
            "used": used,
            "limit": self.max_requests,
            "window": self.window_seconds,
            "available": max(0, self.max_requests - used),
        }


class RedisSlidingWindowRateLimiter:
    """
    Sliding window rate limiter using a Redis sorted set.

    Every Celery worker shares the same window. The Lua script prunes,
    counts and records in one atomic step.
    """

    # Returns: (admitted, wait_time_if_needed)
    ACQUIRE_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local member = ARGV[4]

    -- Drop requests outside the window
    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)

    local used = redis.call('ZCARD', key)
    if used < limit then
        redis.call('ZADD', key, now, member)
        redis.call('PEXPIRE', key, math.ceil(window * 1000))
        return {1, '0'}
    end

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    return {0, tostring(tonumber(oldest[2]) + window - now)}
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        key: str = "ratelimit:wallet_snapshots",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            redis_client: Redis client for distributed state
            max_requests: Requests allowed per window
            window_seconds: Window length in seconds
            key: Redis key holding the window
            clock: Wall clock shared by every process
            sleep: Coroutine used to wait
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key = key
        self._clock = clock
        self._sleep = sleep
        self._script = None

    async def acquire(self) -> float:
        """
        Wait for a free slot and record a request.

        Returns:
            Seconds spent waiting
        """
        if self._script is None:
            self._script = self.redis.register_script(self.ACQUIRE_SCRIPT)

        waited = 0.0
        while True:
            now = self._clock()
            try:
                admitted, wait_time = await self._script(
                    keys=[self.key],
                    args=[
                        self.max_requests,
                        self.window_seconds,
                        now,
                        f"{now}:{uuid4().hex}",
                    ],
                )
            except RedisError as e:
                logger.error("rate_limiter_error", error=str(e), key=self.key)
                # Fail open - the provider's own 429 handling still applies
                return waited

            if int(admitted) == 1:
                return waited

            if isinstance(wait_time, bytes):
                wait_time = wait_time.decode()
            wait_time = max(float(wait_time), 0.01)
            logger.debug("rate_limited", wait_time=round(wait_time, 3), key=self.key)
            await self._sleep(wait_time)
            waited += wait_time

    async def status(self) -> dict[str, Any]:
        """Get current usage of the shared window."""
        try:
            now = self._clock()
            await self.redis.zremrangebyscore(self.key, "-inf", now - self.window_seconds)
            used = await self.redis.zcard(self.key)
        except RedisError as e:
            logger.error("get_stats_error", error=str(e))
            return {"key": self.key, "error": str(e)}
        return {
            "used": used,
            "limit": self.max_requests,
            "window": self.window_seconds,
            "available": max(0, self.max_requests - used),
        }
