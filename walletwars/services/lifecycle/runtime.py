"""Wiring of the lifecycle engine from settings.

Celery tasks and the API build their engine here so both hosts share the
same rate limiter, guard and budget configuration.
"""

import redis.asyncio as redis

from walletwars.config import Settings, TournamentConfig, get_settings, get_tournament_config
from walletwars.services.lifecycle.engine import TournamentLifecycleEngine
from walletwars.services.lifecycle.guard import InMemoryTransitionGuard, RedisTransitionGuard
from walletwars.services.snapshots.budget import RedisSnapshotBudget, SnapshotBudget
from walletwars.services.snapshots.manager import SnapshotManager
from walletwars.services.store.base import RecordStore
from walletwars.services.wallet_client import build_rate_limiter
from walletwars.services.wallet_client.providers import SnapshotProvider


def build_lifecycle_engine(
    store: RecordStore,
    provider: SnapshotProvider,
    redis_client: redis.Redis | None = None,
    settings: Settings | None = None,
    tournament_config: TournamentConfig | None = None,
) -> TournamentLifecycleEngine:
    """
    Create an engine from settings.

    With a Redis client the guard, budget and rate limit window are shared
    across processes; without one they live in this process only.
    """
    settings = settings or get_settings()
    tournament_config = tournament_config or get_tournament_config()

    if redis_client is not None:
        guard = RedisTransitionGuard(
            redis_client, ttl_seconds=settings.transition_guard_ttl_seconds
        )
        budget = RedisSnapshotBudget(
            redis_client,
            hourly_limit=settings.snapshot_budget_hourly,
            daily_limit=settings.snapshot_budget_daily,
        )
    else:
        guard = InMemoryTransitionGuard()
        budget = SnapshotBudget(
            hourly_limit=settings.snapshot_budget_hourly,
            daily_limit=settings.snapshot_budget_daily,
        )

    snapshot_manager = SnapshotManager(
        store=store,
        provider=provider,
        rate_limiter=build_rate_limiter(settings, redis_client),
        budget=budget,
        max_concurrency=settings.snapshot_concurrency,
    )

    return TournamentLifecycleEngine(
        store=store,
        snapshot_manager=snapshot_manager,
        tournament_config=tournament_config,
        guard=guard,
        budget=budget,
        poll_interval=settings.lifecycle_poll_interval_seconds,
        stats_include_all_participants=settings.stats_include_all_participants,
    )
