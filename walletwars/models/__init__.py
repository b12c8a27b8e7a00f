"""Database models for WalletWars."""

from walletwars.models.base import Base, async_session_factory, engine
from walletwars.models.domain import (
    Champion,
    ChampionStats,
    EntryStatus,
    JobRun,
    PayoutStatus,
    PrizeDistribution,
    SnapshotType,
    TournamentEntry,
    TournamentInstance,
    TournamentReport,
    TournamentStatus,
    TournamentTemplate,
    WalletSnapshot,
)

__all__ = [
    # Base
    "Base",
    "engine",
    "async_session_factory",
    # Enums
    "TournamentStatus",
    "EntryStatus",
    "SnapshotType",
    "PayoutStatus",
    # Domain models
    "Champion",
    "TournamentTemplate",
    "TournamentInstance",
    "TournamentEntry",
    "WalletSnapshot",
    "PrizeDistribution",
    "ChampionStats",
    "TournamentReport",
    "JobRun",
]
