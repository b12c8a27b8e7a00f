"""Tournament lifecycle task.

Runs one lifecycle pass: opens and closes registration, starts and ends
tournaments, and parks interrupted finalizations for review.
"""

from collections import Counter
from datetime import datetime, timezone

import redis.asyncio as redis
import structlog

from walletwars.config import get_settings
from walletwars.models.base import get_task_session_factory
from walletwars.models.domain import JobRun
from walletwars.services.lifecycle.engine import TransitionOutcome
from walletwars.services.lifecycle.runtime import build_lifecycle_engine
from walletwars.services.store import SqlRecordStore
from walletwars.services.wallet_client import build_snapshot_provider
from walletwars.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True)
def process_tournament_lifecycle(self):
    """
    Scheduled: Every 60 seconds

    Process:
    1. List instances in non-terminal states, ordered by start time
    2. Fire at most one due transition per instance
       - scheduled -> registering
       - registering -> registration_closed (or cancelled below minimum)
       - registration_closed -> active + start snapshots
       - active -> ended + end snapshots, rankings, prizes -> complete
       - ended at rest -> needs_review
    3. Log job run

    Overlapping runs are safe: transitions are guarded in Redis and
    status writes are compare-and-set.
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_process_lifecycle_async(self))
    finally:
        loop.close()


async def _process_lifecycle_async(task):
    """Async implementation of the lifecycle pass."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats = {}

    async with get_task_session_factory() as session_factory:
        async with session_factory() as session:
            # Create job run record
            job_run = JobRun(
                job_name="process_tournament_lifecycle",
                started_at=started_at,
                status="running",
            )
            session.add(job_run)
            await session.commit()

            redis_client = redis.from_url(settings.redis_url)
            try:
                async with build_snapshot_provider(settings) as provider:
                    engine = build_lifecycle_engine(
                        store=SqlRecordStore(session_factory),
                        provider=provider,
                        redis_client=redis_client,
                        settings=settings,
                    )
                    results = await engine.run_pass()

                stats = dict(Counter(r.outcome.value for r in results))
                stats["instances"] = len(results)
                stats["transitions"] = [
                    r.to_dict()
                    for r in results
                    if r.outcome != TransitionOutcome.NOT_DUE
                ]
                job_status = "success"
                logger.info(
                    "lifecycle_task_complete",
                    instances=len(results),
                    transitions=len(stats["transitions"]),
                    duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
                )

            except Exception as e:
                job_status = "failed"
                error_message = str(e)
                logger.error(
                    "lifecycle_task_failed",
                    error=str(e),
                    task_id=task.request.id,
                )

            finally:
                await redis_client.aclose()
                # Update job run record
                job_run.completed_at = datetime.now(timezone.utc)
                job_run.status = job_status
                job_run.error_message = error_message
                job_run.records_processed = len(stats.get("transitions", []))
                job_run.job_metadata = stats
                await session.commit()

    return stats
