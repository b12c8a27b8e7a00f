"""Tournament deployment task.

Creates upcoming tournament instances for every configured variant.
"""

from datetime import datetime, timezone

import redis.asyncio as redis
import structlog

from walletwars.config import get_settings, get_tournament_config
from walletwars.models.base import get_task_session_factory
from walletwars.models.domain import JobRun
from walletwars.services.deployment import TournamentDeploymentScheduler
from walletwars.services.store import SqlRecordStore
from walletwars.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, soft_time_limit=240, time_limit=300)
def deploy_upcoming_tournaments(self):
    """
    Scheduled: Daily at 00:00 UTC
    Timeout: 4 minutes

    Process:
    1. Compute deployment dates (configured weekdays at the deployment
       time) within the lookahead horizon, at most max_deployment_dates
    2. For each date and variant:
       a. Get or create the variant's template
       b. Skip if a non-cancelled instance of the template/tier starts
          within the existence window
       c. Create the instance (registration windows, end time, metadata)
    3. Log job run
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_deploy_upcoming_async(self))
    finally:
        loop.close()


async def _deploy_upcoming_async(task):
    """Async implementation of tournament deployment."""
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats = {}

    async with get_task_session_factory() as session_factory:
        async with session_factory() as session:
            # Create job run record
            job_run = JobRun(
                job_name="deploy_upcoming_tournaments",
                started_at=started_at,
                status="running",
            )
            session.add(job_run)
            await session.commit()

            redis_client = redis.from_url(get_settings().redis_url)
            try:
                scheduler = TournamentDeploymentScheduler(
                    store=SqlRecordStore(session_factory),
                    config=get_tournament_config(),
                    redis_client=redis_client,
                )
                stats = await scheduler.deploy_upcoming()

                job_status = "success"
                logger.info(
                    "deployment_task_complete",
                    created=stats.get("created", 0),
                    failed=stats.get("failed", 0),
                    duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
                )

            except Exception as e:
                job_status = "failed"
                error_message = str(e)
                logger.error(
                    "deployment_task_failed",
                    error=str(e),
                    task_id=task.request.id,
                )

            finally:
                await redis_client.aclose()
                # Update job run record
                job_run.completed_at = datetime.now(timezone.utc)
                job_run.status = job_status
                job_run.error_message = error_message
                job_run.records_processed = stats.get("created", 0)
                job_run.job_metadata = stats
                await session.commit()

    return stats
