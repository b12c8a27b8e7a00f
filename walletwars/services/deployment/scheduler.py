"""Tournament deployment scheduler.

Keeps the calendar filled: for every deployment date inside the lookahead
horizon, each configured variant gets exactly one tournament instance.

Existence is checked per (template, tier) in a tolerant window around the
start time, so clock drift or a retried run never creates duplicates.
Cancelled instances do not count as existing.

Runs are debounced: with Redis the claim is shared by every process,
without it only repeated calls on the same scheduler are caught.
"""

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from walletwars.config.tournaments import TournamentConfig, TournamentVariant
from walletwars.models.domain import TournamentInstance, TournamentStatus, TournamentTemplate
from walletwars.services.store.base import RecordStore

logger = structlog.get_logger(__name__)

RUN_CLAIM_KEY = "walletwars:deploy:run"
LAST_RUN_KEY = "walletwars:deploy:last_run"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def tournament_name(variant: TournamentVariant, start: datetime) -> str:
    """Unique display name, e.g. 'Pure Wallet Bronze League - Oct 19, 2026'."""
    return f"{variant.name} - {start:%b} {start.day}, {start.year}"


class TournamentDeploymentScheduler:
    """Creates future tournament instances from the configured variants."""

    def __init__(
        self,
        store: RecordStore,
        config: TournamentConfig,
        clock: Callable[[], datetime] = _utc_now,
        redis_client: redis.Redis | None = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock
        self.redis = redis_client
        self._last_run_at: datetime | None = None

    def upcoming_deployment_dates(self, now: datetime | None = None) -> list[datetime]:
        """
        Future deployment start times within the lookahead horizon.

        Capped at ``max_deployment_dates``.
        """
        now = now or self.clock()
        timing = self.config.timing
        schedule = self.config.schedule
        today = now.astimezone(timezone.utc).date()

        dates = []
        for offset in range(timing.advance_deployment_days):
            day = today + timedelta(days=offset)
            if not schedule.is_deployment_day(day):
                continue
            start = datetime.combine(day, schedule.time_of_day, tzinfo=timezone.utc)
            if start > now:
                dates.append(start)

        return dates[: timing.max_deployment_dates]

    async def deploy_upcoming(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Create missing instances for every upcoming date and variant.

        A run started within ``min_deploy_interval_seconds`` of the
        previous one is skipped.

        Returns:
            Stats dict with counts
        """
        now = now or self.clock()
        stats: dict[str, Any] = {
            "skipped": False,
            "dates": 0,
            "created": 0,
            "existing": 0,
            "failed": 0,
        }

        min_interval = timedelta(seconds=self.config.timing.min_deploy_interval_seconds)
        previous = await self._claim_run(now, min_interval)
        if previous is not None:
            logger.info(
                "deployment_run_debounced",
                last_run_at=previous.isoformat(),
                min_interval_seconds=min_interval.total_seconds(),
            )
            stats["skipped"] = True
            return stats

        dates = self.upcoming_deployment_dates(now)
        stats["dates"] = len(dates)
        logger.info(
            "deployment_run_starting",
            dates=len(dates),
            variants=len(self.config.variants),
        )

        for start in dates:
            for variant in self.config.variants:
                # Each variant is isolated; one failure never blocks the rest
                try:
                    created = await self._ensure_instance(start, variant, now)
                except Exception as e:
                    stats["failed"] += 1
                    logger.error(
                        "tournament_deploy_failed",
                        variant=variant.name,
                        start_time=start.isoformat(),
                        error=str(e),
                    )
                    continue

                if created is None:
                    stats["existing"] += 1
                else:
                    stats["created"] += 1

        logger.info("deployment_run_complete", **stats)
        return stats

    async def _claim_run(self, now: datetime, min_interval: timedelta) -> datetime | None:
        """
        Claim this run.

        Returns:
            Start of the previous run if it is within ``min_interval``
        """
        interval_ms = int(min_interval.total_seconds() * 1000)
        if self.redis is None or interval_ms <= 0:
            if self._last_run_at is not None and now - self._last_run_at < min_interval:
                return self._last_run_at
            self._last_run_at = now
            return None

        try:
            claimed = await self.redis.set(
                RUN_CLAIM_KEY, now.isoformat(), nx=True, px=interval_ms
            )
            if not claimed:
                return await self._shared_last_run() or now
            await self.redis.set(LAST_RUN_KEY, now.isoformat())
        except RedisError as e:
            # Fail open - the existence window still prevents duplicates
            logger.error("deployment_claim_error", error=str(e))
        self._last_run_at = now
        return None

    async def _shared_last_run(self) -> datetime | None:
        value = await self.redis.get(LAST_RUN_KEY)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return datetime.fromisoformat(value)

    async def _ensure_instance(
        self,
        start: datetime,
        variant: TournamentVariant,
        now: datetime,
    ) -> TournamentInstance | None:
        """Create the variant's instance for ``start`` unless one exists."""
        template = await self.get_or_create_template(variant)

        window = timedelta(minutes=self.config.timing.existence_window_minutes)
        existing = await self.store.find_instances(
            start - window,
            start + window,
            template_id=template.id,
            tier=variant.tier,
            exclude_statuses=[TournamentStatus.CANCELLED.value],
        )
        if existing:
            logger.debug(
                "tournament_already_deployed",
                variant=variant.name,
                start_time=start.isoformat(),
                tournament_id=existing[0].id,
            )
            return None

        return await self.create_tournament(start, variant, template, now)

    async def get_or_create_template(self, variant: TournamentVariant) -> TournamentTemplate:
        return await self.store.get_or_create_template(
            variant.name,
            tournament_type=variant.tournament_type,
            trading_style=variant.trading_style,
            tier=variant.tier,
            entry_fee=variant.entry_fee,
            max_participants=variant.max_participants,
            prize_pool_percentage=variant.prize_pool_percentage,
            is_active=True,
        )

    async def create_tournament(
        self,
        start: datetime,
        variant: TournamentVariant,
        template: TournamentTemplate,
        now: datetime | None = None,
    ) -> TournamentInstance:
        """Insert a scheduled instance of ``variant`` starting at ``start``."""
        now = now or self.clock()
        timing = self.config.timing

        instance = await self.store.insert_instance(
            template_id=template.id,
            tournament_name=tournament_name(variant, start),
            status=TournamentStatus.SCHEDULED.value,
            start_time=start,
            end_time=start + timedelta(days=variant.duration_days),
            registration_opens=start - timedelta(days=timing.registration_opens_days_before),
            registration_closes=start
            - timedelta(minutes=timing.registration_close_minutes_before_start),
            participant_count=0,
            total_prize_pool=0,
            min_participants=variant.min_participants,
            deployment_metadata={
                "variant": variant.name,
                "tier": variant.tier,
                "trading_style": variant.trading_style,
                "deployment_batch": f"{start.date().isoformat()}-{variant.trading_style}",
                "deployed_at": now.isoformat(),
            },
        )

        logger.info(
            "tournament_deployed",
            tournament_id=instance.id,
            name=instance.tournament_name,
            start_time=start.isoformat(),
        )
        return instance

    async def get_deployment_status(self, now: datetime | None = None) -> dict[str, Any]:
        """Upcoming instances counted by status and by start date."""
        now = now or self.clock()
        horizon = now + timedelta(days=self.config.timing.advance_deployment_days)
        instances = await self.store.find_instances(now, horizon)

        last_run_at = self._last_run_at
        if self.redis is not None:
            try:
                last_run_at = await self._shared_last_run() or last_run_at
            except RedisError as e:
                logger.error("deployment_last_run_error", error=str(e))

        return {
            "upcoming": len(instances),
            "by_status": dict(Counter(i.status for i in instances)),
            "by_date": dict(Counter(i.start_time.date().isoformat() for i in instances)),
            "next_deployment_dates": [d.isoformat() for d in self.upcoming_deployment_dates(now)],
            "variants": len(self.config.variants),
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
        }
