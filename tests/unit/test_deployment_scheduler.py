"""Unit tests for the tournament deployment scheduler."""

from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import RedisError

from tests.fakes import T0
from walletwars.services.deployment import TournamentDeploymentScheduler, tournament_name

# Sunday before T0 (Monday 2026-10-19 14:00 UTC)
SUNDAY = datetime(2026, 10, 18, 0, 0, tzinfo=timezone.utc)


class TestDeploymentDates:
    """Test which start times are deployed."""

    def test_mondays_and_thursdays_at_configured_time(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        dates = scheduler.upcoming_deployment_dates(SUNDAY)

        assert dates[0] == T0
        assert dates[1] == datetime(2026, 10, 22, 14, 0, tzinfo=timezone.utc)
        assert {d.strftime("%A") for d in dates} == {"Monday", "Thursday"}
        assert all(d.hour == 14 and d.minute == 0 for d in dates)

    def test_capped_at_max_dates(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        assert len(scheduler.upcoming_deployment_dates(SUNDAY)) == 8

        tournament_config.timing.max_deployment_dates = 3
        assert len(scheduler.upcoming_deployment_dates(SUNDAY)) == 3

    def test_start_time_already_passed_today_is_skipped(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        dates = scheduler.upcoming_deployment_dates(T0)

        assert T0 not in dates
        assert dates[0] == datetime(2026, 10, 22, 14, 0, tzinfo=timezone.utc)

    def test_horizon_limits_dates(self, store, tournament_config):
        tournament_config.timing.advance_deployment_days = 7
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        assert len(scheduler.upcoming_deployment_dates(SUNDAY)) == 2


class TestDeployUpcoming:
    """Test instance creation."""

    @pytest.mark.asyncio
    async def test_every_variant_deployed_for_every_date(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        stats = await scheduler.deploy_upcoming(SUNDAY)

        assert stats["dates"] == 8
        assert stats["created"] == 16
        assert stats["failed"] == 0
        assert len(store.instances) == 16
        assert len(store.templates) == 2

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)
        await scheduler.deploy_upcoming(SUNDAY)

        stats = await scheduler.deploy_upcoming(SUNDAY + timedelta(minutes=5))

        assert stats["created"] == 0
        assert stats["existing"] == 16
        assert len(store.instances) == 16

    @pytest.mark.asyncio
    async def test_rapid_rerun_is_debounced(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)
        await scheduler.deploy_upcoming(SUNDAY)

        stats = await scheduler.deploy_upcoming(SUNDAY + timedelta(seconds=10))

        assert stats["skipped"] is True
        assert store.calls["find_instances"] == 16

    @pytest.mark.asyncio
    async def test_instance_inside_existence_window_counts(self, store, tournament_config):
        """An instance 30 minutes off the slot is treated as already deployed."""
        template = store.add_template(name="Pure Wallet Bronze League")
        store.add_instance(template=template, start_time=T0 + timedelta(minutes=30))
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        stats = await scheduler.deploy_upcoming(SUNDAY)

        assert stats["existing"] == 1
        assert stats["created"] == 15

    @pytest.mark.asyncio
    async def test_cancelled_instance_does_not_count(self, store, tournament_config):
        template = store.add_template(name="Pure Wallet Bronze League")
        store.add_instance(status="cancelled", template=template, start_time=T0)
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        stats = await scheduler.deploy_upcoming(SUNDAY)

        assert stats["created"] == 16

    @pytest.mark.asyncio
    async def test_one_variant_failure_does_not_block_others(self, store, tournament_config):
        store.fail("insert_instance")
        scheduler = TournamentDeploymentScheduler(store, tournament_config)

        stats = await scheduler.deploy_upcoming(SUNDAY)

        assert stats["failed"] == 1
        assert stats["created"] == 15

    @pytest.mark.asyncio
    async def test_created_instance_fields(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)
        await scheduler.deploy_upcoming(SUNDAY)

        instance = next(
            i
            for i in store.instances.values()
            if i.start_time == T0 and i.template.name == "Pure Wallet Bronze League"
        )

        assert instance.tournament_name == "Pure Wallet Bronze League - Oct 19, 2026"
        assert instance.status == "scheduled"
        assert instance.registration_opens == T0 - timedelta(days=3)
        assert instance.registration_closes == T0 - timedelta(minutes=10)
        assert instance.end_time == T0 + timedelta(days=7)
        assert instance.min_participants == 10
        assert instance.deployment_metadata["tier"] == "bronze"
        assert instance.deployment_metadata["deployment_batch"] == "2026-10-19-pure_wallet"
        assert instance.deployment_metadata["deployed_at"] == SUNDAY.isoformat()

    @pytest.mark.asyncio
    async def test_deployment_status(self, store, tournament_config):
        scheduler = TournamentDeploymentScheduler(store, tournament_config)
        await scheduler.deploy_upcoming(SUNDAY)

        status = await scheduler.get_deployment_status(SUNDAY)

        assert status["upcoming"] == 16
        assert status["by_status"] == {"scheduled": 16}
        assert status["by_date"]["2026-10-19"] == 2
        assert len(status["next_deployment_dates"]) == 8
        assert status["last_run_at"] == SUNDAY.isoformat()


def test_tournament_name_has_no_zero_padding(tournament_config):
    variant = tournament_config.variants[0]
    start = datetime(2026, 11, 2, 14, 0, tzinfo=timezone.utc)

    assert tournament_name(variant, start) == "Pure Wallet Bronze League - Nov 2, 2026"


class TestSharedDebounce:
    """Test the debounce shared through Redis."""

    @pytest.mark.asyncio
    async def test_second_process_is_debounced(self, store, tournament_config, mock_redis):
        """A fresh scheduler per task run still sees the previous run."""
        first = TournamentDeploymentScheduler(store, tournament_config, redis_client=mock_redis)
        second = TournamentDeploymentScheduler(store, tournament_config, redis_client=mock_redis)
        await first.deploy_upcoming(SUNDAY)

        stats = await second.deploy_upcoming(SUNDAY + timedelta(seconds=10))

        assert stats["skipped"] is True
        assert store.calls["find_instances"] == 16
        assert mock_redis.expirations["walletwars:deploy:run"] == (
            tournament_config.timing.min_deploy_interval_seconds * 1000
        )

    @pytest.mark.asyncio
    async def test_status_reports_shared_last_run(self, store, tournament_config, mock_redis):
        await TournamentDeploymentScheduler(
            store, tournament_config, redis_client=mock_redis
        ).deploy_upcoming(SUNDAY)

        status = await TournamentDeploymentScheduler(
            store, tournament_config, redis_client=mock_redis
        ).get_deployment_status(SUNDAY)

        assert status["last_run_at"] == SUNDAY.isoformat()

    @pytest.mark.asyncio
    async def test_redis_outage_does_not_block_deployment(self, store, tournament_config):
        class BrokenRedis:
            async def set(self, *args, **kwargs):
                raise RedisError("connection refused")

        scheduler = TournamentDeploymentScheduler(
            store, tournament_config, redis_client=BrokenRedis()
        )

        stats = await scheduler.deploy_upcoming(SUNDAY)

        assert stats["skipped"] is False
        assert stats["created"] == 16
