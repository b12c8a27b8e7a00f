"""FastAPI dependencies for WalletWars."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from walletwars.config import get_settings, get_tournament_config
from walletwars.models.base import async_session_factory
from walletwars.services.deployment import TournamentDeploymentScheduler
from walletwars.services.lifecycle import TournamentLifecycleEngine
from walletwars.services.lifecycle.runtime import build_lifecycle_engine
from walletwars.services.store import RecordStore, SqlRecordStore
from walletwars.services.wallet_client import FallbackSnapshotProvider, build_snapshot_provider


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


def get_record_store() -> RecordStore:
    """Get record store dependency."""
    return SqlRecordStore(async_session_factory)


async def get_snapshot_provider() -> AsyncGenerator[FallbackSnapshotProvider, None]:
    """Get wallet provider chain dependency."""
    async with build_snapshot_provider() as provider:
        yield provider


def get_lifecycle_engine(
    store: RecordStore = Depends(get_record_store),
    provider: FallbackSnapshotProvider = Depends(get_snapshot_provider),
    redis_client: redis.Redis = Depends(get_redis),
) -> TournamentLifecycleEngine:
    """
    Get lifecycle engine dependency.

    Uses the Redis guard and rate limit window, so a manual action never
    overlaps a Celery worker or exceeds the provider limit alongside it.
    """
    return build_lifecycle_engine(store=store, provider=provider, redis_client=redis_client)


def get_deployment_scheduler(
    store: RecordStore = Depends(get_record_store),
    redis_client: redis.Redis = Depends(get_redis),
) -> TournamentDeploymentScheduler:
    """Get deployment scheduler dependency."""
    return TournamentDeploymentScheduler(
        store=store, config=get_tournament_config(), redis_client=redis_client
    )
