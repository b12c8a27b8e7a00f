"""Wallet provider client module."""

import redis.asyncio as redis

from walletwars.config import Settings, get_settings
from walletwars.services.wallet_client.providers import (
    BalanceResult,
    FallbackSnapshotProvider,
    Holding,
    SnapshotProvider,
    SolanaRpcProvider,
    WalletSnapshotData,
    is_valid_solana_address,
)
from walletwars.services.wallet_client.rate_limiter import (
    RateLimiter,
    RedisSlidingWindowRateLimiter,
    SlidingWindowRateLimiter,
)


def build_snapshot_provider(settings: Settings | None = None) -> FallbackSnapshotProvider:
    """Create the provider chain from configured RPC endpoints."""
    settings = settings or get_settings()
    return FallbackSnapshotProvider(
        [
            SolanaRpcProvider(
                name=name,
                rpc_url=url,
                timeout=settings.rpc_timeout_seconds,
                max_retries=settings.rpc_max_retries,
            )
            for name, url in settings.provider_urls()
        ]
    )


def build_rate_limiter(
    settings: Settings | None = None,
    redis_client: redis.Redis | None = None,
) -> RateLimiter:
    """
    Create the snapshot rate limiter.

    With a Redis client every worker and API process draws from one window;
    without one the window is local to this process.
    """
    settings = settings or get_settings()
    if redis_client is not None:
        return RedisSlidingWindowRateLimiter(
            redis_client,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


__all__ = [
    "BalanceResult",
    "FallbackSnapshotProvider",
    "Holding",
    "RateLimiter",
    "RedisSlidingWindowRateLimiter",
    "SlidingWindowRateLimiter",
    "SnapshotProvider",
    "SolanaRpcProvider",
    "WalletSnapshotData",
    "build_rate_limiter",
    "build_snapshot_provider",
    "is_valid_solana_address",
]
