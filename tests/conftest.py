"""Pytest configuration and fixtures for WalletWars tests."""

from decimal import Decimal

import pytest

from tests.fakes import (
    FakeRecordStore,
    ManualClock,
    MockRedis,
    ScriptedProvider,
    UnlimitedRateLimiter,
)
from walletwars.config.tournaments import (
    DeploymentSchedule,
    TimingConfig,
    TournamentConfig,
    TournamentVariant,
)
from walletwars.services.lifecycle import TournamentLifecycleEngine
from walletwars.services.snapshots import SnapshotManager


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def tournament_config():
    """Two variants on Monday/Thursday 14:00 UTC with the standard prize table."""
    standard = {
        10: [Decimal(p) for p in (50, 30, 20)],
        100: [Decimal(p) for p in (35, 25, 15, 10, 8, 7)],
    }
    return TournamentConfig(
        schedule=DeploymentSchedule(),
        timing=TimingConfig(),
        variants=[
            TournamentVariant(
                name="Pure Wallet Bronze League",
                trading_style="pure_wallet",
                tier="bronze",
                max_participants=100,
                min_participants=10,
                entry_fee=Decimal("0.01"),
            ),
            TournamentVariant(
                name="Open Trading Bronze Battle",
                trading_style="open_trading",
                tier="bronze",
                max_participants=100,
                min_participants=10,
                entry_fee=Decimal("0.01"),
                prize_pool_percentage=Decimal("80"),
            ),
        ],
        prize_tables={"default": standard, "bronze": standard},
    )


@pytest.fixture
def make_engine(store, provider, tournament_config, clock):
    """Build an engine over the fake store; keyword arguments override collaborators."""

    def _make(**overrides):
        manager = SnapshotManager(
            store=store,
            provider=overrides.pop("provider", provider),
            rate_limiter=overrides.pop("rate_limiter", UnlimitedRateLimiter()),
            budget=overrides.get("budget"),
            max_concurrency=overrides.pop("max_concurrency", 5),
        )
        return TournamentLifecycleEngine(
            store=store,
            snapshot_manager=manager,
            tournament_config=tournament_config,
            clock=clock,
            **overrides,
        )

    return _make
