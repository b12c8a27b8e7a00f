"""In-flight guards for lifecycle transitions.

A guard marks "transition K of tournament T is running" so overlapping
passes (the periodic pass and a manual trigger, or two worker processes)
cannot both run the same start or end sequence. Acquisition is an atomic
check-and-set; release always happens in ``finally``.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

import redis.asyncio as redis
import structlog

from walletwars.services.errors import DuplicateTransitionError

logger = structlog.get_logger(__name__)


def guard_key(tournament_id: int, kind: str) -> str:
    return f"{kind}_{tournament_id}"


class TransitionGuard(ABC):
    """Mutual exclusion per (tournament id, transition kind)."""

    @abstractmethod
    async def try_acquire(self, key: str) -> str | None:
        """Mark ``key`` in flight. Returns an owner token, or None if already held."""

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Clear ``key`` if still owned by ``token``."""

    @abstractmethod
    async def in_flight(self) -> list[str]:
        """Keys currently held."""

    @asynccontextmanager
    async def hold(self, tournament_id: int, kind: str) -> AsyncIterator[str]:
        """
        Hold the guard for one transition.

        Raises:
            DuplicateTransitionError: If the transition is already in flight
        """
        key = guard_key(tournament_id, kind)
        token = await self.try_acquire(key)
        if token is None:
            raise DuplicateTransitionError(tournament_id, kind)
        try:
            yield key
        finally:
            await self.release(key, token)


class InMemoryTransitionGuard(TransitionGuard):
    """Guard for a single process: a lock-protected map of held keys."""

    def __init__(self):
        self._held: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, key: str) -> str | None:
        async with self._lock:
            if key in self._held:
                return None
            token = uuid4().hex
            self._held[key] = token
            return token

    async def release(self, key: str, token: str) -> None:
        async with self._lock:
            if self._held.get(key) == token:
                del self._held[key]

    async def in_flight(self) -> list[str]:
        return sorted(self._held)


class RedisTransitionGuard(TransitionGuard):
    """
    Guard shared by every process through Redis.

    SET NX PX takes the key only if it is free; the TTL frees it if the
    holder dies mid-transition. Release deletes the key only when the
    stored token still matches, so an expired holder cannot clear a key
    another process has since taken.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = 1800,
        prefix: str = "walletwars:transition:",
    ):
        """
        Initialize guard.

        Args:
            redis_client: Redis client
            ttl_seconds: Expiry of a held key; must outlast the slowest batch
            prefix: Key namespace
        """
        self.redis = redis_client
        self.ttl_ms = int(ttl_seconds * 1000)
        self.prefix = prefix
        self._release_script = None

    async def try_acquire(self, key: str) -> str | None:
        token = f"{uuid4().hex}:{time.time_ns()}"
        acquired = await self.redis.set(self.prefix + key, token, nx=True, px=self.ttl_ms)
        if not acquired:
            return None
        return token

    async def release(self, key: str, token: str) -> None:
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_SCRIPT)
        released = await self._release_script(keys=[self.prefix + key], args=[token])
        if not released:
            logger.warning("transition_guard_expired_before_release", key=key)

    async def in_flight(self) -> list[str]:
        keys = []
        async for raw in self.redis.scan_iter(match=f"{self.prefix}*"):
            name = raw.decode() if isinstance(raw, bytes) else raw
            keys.append(name[len(self.prefix):])
        return sorted(keys)
