"""Health check endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from walletwars.api.dependencies import get_db, get_redis, get_snapshot_provider
from walletwars.config import get_settings
from walletwars.services.wallet_client import FallbackSnapshotProvider

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, ReadyCheck]


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    """
    Readiness check for all dependencies.

    Checks:
    - Database connectivity
    - Redis connectivity
    - Wallet providers configured
    """
    checks = {}
    all_ready = True

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["db"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Check Redis
    try:
        await redis_client.ping()
        checks["redis"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["redis"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Check provider chain
    providers = [name for name, _ in get_settings().provider_urls()]
    if len(providers) > 1:
        checks["providers"] = ReadyCheck(status="ok", message=", ".join(providers))
    else:
        checks["providers"] = ReadyCheck(
            status="warning", message=f"No fallback provider: {', '.join(providers)}"
        )
        # Don't mark as not ready, just warn

    return ReadyResponse(ready=all_ready, checks=checks)


@router.get("/health/providers")
async def providers_health(
    provider: FallbackSnapshotProvider = Depends(get_snapshot_provider),
):
    """
    Check connectivity of every wallet provider.

    Healthy while at least one provider in the chain answers.
    """
    try:
        providers = await provider.get_multi_provider_status()
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc),
        }

    online = [name for name, status in providers.items() if status["online"]]
    return {
        "status": "healthy" if online else "unhealthy",
        "providers": providers,
        "timestamp": datetime.now(timezone.utc),
    }
