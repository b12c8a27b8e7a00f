"""Record store interface.

Every method is one atomic operation. The engine never assumes
multi-statement transactions, so each write fails independently with
StorageError and is handled by the caller.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Any

from walletwars.models.domain import (
    ChampionStats,
    PrizeDistribution,
    TournamentEntry,
    TournamentInstance,
    TournamentReport,
    TournamentTemplate,
    WalletSnapshot,
)


class RecordStore(ABC):
    """Query/update/insert surface consumed by the tournament engine."""

    # Instances

    @abstractmethod
    async def list_instances(self, statuses: Iterable[str]) -> list[TournamentInstance]:
        """List instances in any of the statuses, ordered by start time."""

    @abstractmethod
    async def get_instance(self, instance_id: int) -> TournamentInstance | None:
        """Fetch an instance with its template loaded."""

    @abstractmethod
    async def update_instance(
        self,
        instance_id: int,
        expected_status: str | None = None,
        **fields: Any,
    ) -> bool:
        """
        Update instance fields.

        With ``expected_status`` the update only applies while the stored
        status still matches (compare-and-set).

        Returns:
            True if a row was updated
        """

    @abstractmethod
    async def insert_instance(self, **fields: Any) -> TournamentInstance:
        """Create a tournament instance."""

    @abstractmethod
    async def find_instances(
        self,
        start_from: datetime,
        start_to: datetime,
        template_id: int | None = None,
        tier: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[TournamentInstance]:
        """Find instances starting inside a window, optionally for one template/tier."""

    @abstractmethod
    async def get_or_create_template(self, name: str, **fields: Any) -> TournamentTemplate:
        """Get a template by name, creating it with ``fields`` if missing."""

    # Entries

    @abstractmethod
    async def list_entries(
        self,
        instance_id: int,
        statuses: Iterable[str] | None = None,
    ) -> list[TournamentEntry]:
        """List entries with champions loaded, in registration order."""

    @abstractmethod
    async def count_entries(self, instance_id: int, status: str) -> int:
        """Count entries of an instance in one status."""

    @abstractmethod
    async def update_entry(self, entry_id: int, **fields: Any) -> None:
        """Update entry fields."""

    # Snapshots

    @abstractmethod
    async def insert_snapshot(self, **fields: Any) -> WalletSnapshot:
        """Insert a wallet snapshot. Snapshots are never updated."""

    @abstractmethod
    async def find_snapshot(self, entry_id: int, snapshot_type: str) -> WalletSnapshot | None:
        """Find the snapshot of one type for an entry."""

    @abstractmethod
    async def get_snapshots(self, snapshot_ids: Iterable[int]) -> dict[int, WalletSnapshot]:
        """Fetch snapshots by id."""

    # Prizes and stats

    @abstractmethod
    async def get_prize_distribution(
        self, instance_id: int, champion_id: int
    ) -> PrizeDistribution | None:
        """Fetch the prize row of a champion in a tournament."""

    @abstractmethod
    async def list_prize_distributions(self, instance_id: int) -> list[PrizeDistribution]:
        """List prize rows of a tournament in rank order."""

    @abstractmethod
    async def insert_prize_distribution(self, **fields: Any) -> PrizeDistribution:
        """Insert a prize row."""

    @abstractmethod
    async def update_prize_distribution(self, distribution_id: int, **fields: Any) -> None:
        """Update payout fields of a prize row."""

    @abstractmethod
    async def apply_champion_result(
        self,
        champion_id: int,
        played: int = 1,
        won: int = 0,
        sol_earned: Decimal = Decimal("0"),
    ) -> ChampionStats:
        """
        Increment a champion's cumulative stats (read-modify-write).

        Creates the stats row if the champion has none. A win extends the
        current streak; a played tournament without a win resets it.
        """

    # Reports

    @abstractmethod
    async def insert_report(self, instance_id: int, report_data: dict[str, Any]) -> TournamentReport:
        """Archive an end-of-tournament report."""


def apply_result_to_stats(
    stats: ChampionStats,
    played: int,
    won: int,
    sol_earned: Decimal,
) -> ChampionStats:
    """Apply one tournament result to a stats row in place."""
    stats.tournaments_played = (stats.tournaments_played or 0) + played
    stats.tournaments_won = (stats.tournaments_won or 0) + won
    stats.total_sol_earned = (stats.total_sol_earned or Decimal("0")) + sol_earned
    if won:
        stats.current_win_streak = (stats.current_win_streak or 0) + won
        stats.best_win_streak = max(stats.best_win_streak or 0, stats.current_win_streak)
    elif played:
        stats.current_win_streak = 0
    return stats
