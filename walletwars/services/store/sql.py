"""PostgreSQL record store.

Each operation opens its own session and commits before returning, so
concurrent per-entrant calls never share a session and every call is
atomic on its own. SQLAlchemy errors are wrapped into StorageError.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from walletwars.models.domain import (
    ChampionStats,
    PrizeDistribution,
    TournamentEntry,
    TournamentInstance,
    TournamentReport,
    TournamentTemplate,
    WalletSnapshot,
)
from walletwars.services.errors import StorageError
from walletwars.services.store.base import RecordStore, apply_result_to_stats

logger = structlog.get_logger(__name__)


class SqlRecordStore(RecordStore):
    """RecordStore backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize store.

        Args:
            session_factory: Factory creating sessions with expire_on_commit=False
        """
        self.session_factory = session_factory

    def _wrap(self, operation: str, error: SQLAlchemyError) -> StorageError:
        logger.error("storage_error", operation=operation, error=str(error))
        return StorageError(f"{operation} failed: {error}", operation=operation)

    # Instances

    async def list_instances(self, statuses: Iterable[str]) -> list[TournamentInstance]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(TournamentInstance)
                    .options(selectinload(TournamentInstance.template))
                    .where(TournamentInstance.status.in_(list(statuses)))
                    .order_by(TournamentInstance.start_time.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._wrap("list_instances", e) from e

    async def get_instance(self, instance_id: int) -> TournamentInstance | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(TournamentInstance)
                    .options(selectinload(TournamentInstance.template))
                    .where(TournamentInstance.id == instance_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._wrap("get_instance", e) from e

    async def update_instance(
        self,
        instance_id: int,
        expected_status: str | None = None,
        **fields: Any,
    ) -> bool:
        stmt = update(TournamentInstance).where(TournamentInstance.id == instance_id)
        if expected_status is not None:
            stmt = stmt.where(TournamentInstance.status == expected_status)
        stmt = stmt.values(**fields, updated_at=datetime.now(timezone.utc))
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._wrap("update_instance", e) from e

    async def insert_instance(self, **fields: Any) -> TournamentInstance:
        try:
            async with self.session_factory() as session:
                instance = TournamentInstance(**fields)
                session.add(instance)
                await session.commit()
                return instance
        except SQLAlchemyError as e:
            raise self._wrap("insert_instance", e) from e

    async def find_instances(
        self,
        start_from: datetime,
        start_to: datetime,
        template_id: int | None = None,
        tier: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[TournamentInstance]:
        query = select(TournamentInstance).where(
            TournamentInstance.start_time >= start_from,
            TournamentInstance.start_time <= start_to,
        )
        if template_id is not None:
            query = query.where(TournamentInstance.template_id == template_id)
        if tier is not None:
            query = query.where(
                TournamentInstance.deployment_metadata["tier"].astext == tier
            )
        excluded = list(exclude_statuses)
        if excluded:
            query = query.where(TournamentInstance.status.not_in(excluded))
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    query.order_by(TournamentInstance.start_time.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._wrap("find_instances", e) from e

    async def get_or_create_template(self, name: str, **fields: Any) -> TournamentTemplate:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(TournamentTemplate).where(TournamentTemplate.name == name)
                )
                template = result.scalar_one_or_none()
                if template:
                    return template

                template = TournamentTemplate(name=name, **fields)
                session.add(template)
                await session.commit()
                logger.info("template_created", name=name, template_id=template.id)
                return template
        except SQLAlchemyError as e:
            raise self._wrap("get_or_create_template", e) from e

    # Entries

    async def list_entries(
        self,
        instance_id: int,
        statuses: Iterable[str] | None = None,
    ) -> list[TournamentEntry]:
        query = (
            select(TournamentEntry)
            .options(selectinload(TournamentEntry.champion))
            .where(TournamentEntry.tournament_instance_id == instance_id)
        )
        if statuses is not None:
            query = query.where(TournamentEntry.status.in_(list(statuses)))
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    query.order_by(
                        TournamentEntry.registered_at.asc(), TournamentEntry.id.asc()
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._wrap("list_entries", e) from e

    async def count_entries(self, instance_id: int, status: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count(TournamentEntry.id)).where(
                        TournamentEntry.tournament_instance_id == instance_id,
                        TournamentEntry.status == status,
                    )
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise self._wrap("count_entries", e) from e

    async def update_entry(self, entry_id: int, **fields: Any) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(TournamentEntry)
                    .where(TournamentEntry.id == entry_id)
                    .values(**fields, updated_at=datetime.now(timezone.utc))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._wrap("update_entry", e) from e

    # Snapshots

    async def insert_snapshot(self, **fields: Any) -> WalletSnapshot:
        try:
            async with self.session_factory() as session:
                snapshot = WalletSnapshot(**fields)
                session.add(snapshot)
                await session.commit()
                return snapshot
        except SQLAlchemyError as e:
            raise self._wrap("insert_snapshot", e) from e

    async def find_snapshot(self, entry_id: int, snapshot_type: str) -> WalletSnapshot | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(WalletSnapshot).where(
                        WalletSnapshot.entry_id == entry_id,
                        WalletSnapshot.snapshot_type == snapshot_type,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._wrap("find_snapshot", e) from e

    async def get_snapshots(self, snapshot_ids: Iterable[int]) -> dict[int, WalletSnapshot]:
        ids = list(snapshot_ids)
        if not ids:
            return {}
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(WalletSnapshot).where(WalletSnapshot.id.in_(ids))
                )
                return {s.id: s for s in result.scalars().all()}
        except SQLAlchemyError as e:
            raise self._wrap("get_snapshots", e) from e

    # Prizes and stats

    async def get_prize_distribution(
        self, instance_id: int, champion_id: int
    ) -> PrizeDistribution | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(PrizeDistribution).where(
                        PrizeDistribution.tournament_instance_id == instance_id,
                        PrizeDistribution.champion_id == champion_id,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._wrap("get_prize_distribution", e) from e

    async def list_prize_distributions(self, instance_id: int) -> list[PrizeDistribution]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(PrizeDistribution)
                    .where(PrizeDistribution.tournament_instance_id == instance_id)
                    .order_by(PrizeDistribution.rank.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._wrap("list_prize_distributions", e) from e

    async def insert_prize_distribution(self, **fields: Any) -> PrizeDistribution:
        try:
            async with self.session_factory() as session:
                distribution = PrizeDistribution(**fields)
                session.add(distribution)
                await session.commit()
                return distribution
        except SQLAlchemyError as e:
            raise self._wrap("insert_prize_distribution", e) from e

    async def update_prize_distribution(self, distribution_id: int, **fields: Any) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(PrizeDistribution)
                    .where(PrizeDistribution.id == distribution_id)
                    .values(**fields)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._wrap("update_prize_distribution", e) from e

    async def apply_champion_result(
        self,
        champion_id: int,
        played: int = 1,
        won: int = 0,
        sol_earned: Decimal = Decimal("0"),
    ) -> ChampionStats:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ChampionStats)
                    .where(ChampionStats.champion_id == champion_id)
                    .with_for_update()
                )
                stats = result.scalar_one_or_none()
                if stats is None:
                    stats = ChampionStats(
                        champion_id=champion_id,
                        tournaments_played=0,
                        tournaments_won=0,
                        total_sol_earned=Decimal("0"),
                        current_win_streak=0,
                        best_win_streak=0,
                    )
                    session.add(stats)
                apply_result_to_stats(stats, played, won, sol_earned)
                await session.commit()
                return stats
        except SQLAlchemyError as e:
            raise self._wrap("apply_champion_result", e) from e

    # Reports

    async def insert_report(self, instance_id: int, report_data: dict[str, Any]) -> TournamentReport:
        try:
            async with self.session_factory() as session:
                report = TournamentReport(
                    tournament_instance_id=instance_id,
                    report_data=report_data,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(report)
                await session.commit()
                return report
        except SQLAlchemyError as e:
            raise self._wrap("insert_report", e) from e
