"""Wallet snapshot capture and ranking."""

from walletwars.services.snapshots.budget import RedisSnapshotBudget, SnapshotBudget
from walletwars.services.snapshots.manager import (
    ExcludedEntrant,
    Ranking,
    SnapshotBatchResult,
    SnapshotFailure,
    SnapshotManager,
    TournamentResults,
    calculate_performance,
    rank_entrants,
)

__all__ = [
    "ExcludedEntrant",
    "Ranking",
    "RedisSnapshotBudget",
    "SnapshotBatchResult",
    "SnapshotBudget",
    "SnapshotFailure",
    "SnapshotManager",
    "TournamentResults",
    "calculate_performance",
    "rank_entrants",
]
