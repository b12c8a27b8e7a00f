"""Snapshot call budget.

Counts provider calls in fixed UTC hour and day buckets. The engine asks
``can_afford(n)`` before a start or end batch and postpones the
transition when either limit would be exceeded; the next pass retries
once the bucket rolls over.

A batch larger than a limit can never fit under it, so such a batch is
admitted when that bucket is still empty rather than postponed forever.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotBudget:
    """In-process hourly/daily call counter."""

    def __init__(
        self,
        hourly_limit: int | None = None,
        daily_limit: int | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.hourly_limit = hourly_limit
        self.daily_limit = daily_limit
        self._clock = clock
        self._counts: dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.hourly_limit or self.daily_limit)

    def _buckets(self) -> tuple[str, str]:
        now = self._clock().astimezone(timezone.utc)
        return f"hour:{now:%Y%m%d%H}", f"day:{now:%Y%m%d}"

    async def usage(self) -> tuple[int, int]:
        """Calls recorded in the current (hour, day) buckets."""
        hour, day = self._buckets()
        # Only current buckets matter
        self._counts = {k: v for k, v in self._counts.items() if k in (hour, day)}
        return self._counts.get(hour, 0), self._counts.get(day, 0)

    async def _increment(self, calls: int) -> None:
        for bucket in self._buckets():
            self._counts[bucket] = self._counts.get(bucket, 0) + calls

    async def record(self, calls: int = 1) -> None:
        if not self.enabled or calls <= 0:
            return
        await self._increment(calls)

    async def can_afford(self, calls: int) -> bool:
        """Check whether ``calls`` more provider calls fit in both buckets."""
        if not self.enabled or calls <= 0:
            return True

        hourly, daily = await self.usage()
        for used, limit in ((hourly, self.hourly_limit), (daily, self.daily_limit)):
            if not limit:
                continue
            if used + calls > limit and not (calls > limit and used == 0):
                return False
        return True

    async def status(self) -> dict[str, Any]:
        hourly, daily = await self.usage()
        return {
            "enabled": self.enabled,
            "hourly": {"used": hourly, "limit": self.hourly_limit},
            "daily": {"used": daily, "limit": self.daily_limit},
        }


class RedisSnapshotBudget(SnapshotBudget):
    """Budget counters shared across worker processes."""

    def __init__(
        self,
        redis_client: redis.Redis,
        hourly_limit: int | None = None,
        daily_limit: int | None = None,
        clock: Callable[[], datetime] = _utc_now,
        prefix: str = "walletwars:budget:",
    ):
        super().__init__(hourly_limit, daily_limit, clock)
        self.redis = redis_client
        self.prefix = prefix

    async def usage(self) -> tuple[int, int]:
        hour, day = self._buckets()
        values = await self.redis.mget([self.prefix + hour, self.prefix + day])
        return tuple(int(v) if v is not None else 0 for v in values)

    async def _increment(self, calls: int) -> None:
        hour, day = self._buckets()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incrby(self.prefix + hour, calls)
            pipe.expire(self.prefix + hour, 2 * 3600)
            pipe.incrby(self.prefix + day, calls)
            pipe.expire(self.prefix + day, 2 * 86400)
            await pipe.execute()
