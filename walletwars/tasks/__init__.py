"""Celery tasks for WalletWars.

This module configures Celery and registers all periodic tasks.
"""

from celery import Celery
from celery.schedules import crontab

from walletwars.config import get_settings
from walletwars.config.logging_config import configure_logging

settings = get_settings()
configure_logging(settings.log_level)

# Create Celery application
celery_app = Celery(
    "walletwars",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "walletwars.tasks.lifecycle",
        "walletwars.tasks.deployment",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=1800,  # 30 minute hard limit (large snapshot batches)
    task_soft_time_limit=1740,
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Lifecycle pass - every minute
    "process-tournament-lifecycle": {
        "task": "walletwars.tasks.lifecycle.process_tournament_lifecycle",
        "schedule": 60.0,
        "options": {"expires": 55},  # Expire before next run
    },
    # Deployment - daily at 00:00 UTC
    "deploy-upcoming-tournaments": {
        "task": "walletwars.tasks.deployment.deploy_upcoming_tournaments",
        "schedule": crontab(hour=0, minute=0),
        "options": {"expires": 3600},
    },
}
