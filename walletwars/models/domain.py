"""Domain models for WalletWars.

Tournament instances move through a time-driven state machine. Wallet
snapshots are captured exactly twice per entry (tournament start and end)
and are never edited after insert. Prize rows are unique per
(tournament, champion) so a re-run can never pay a winner twice.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from walletwars.models.base import Base, TimestampMixin


class TournamentStatus(str, Enum):
    """Lifecycle states of a tournament instance."""

    SCHEDULED = "scheduled"
    REGISTERING = "registering"
    REGISTRATION_CLOSED = "registration_closed"
    ACTIVE = "active"
    ENDED = "ended"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    NEEDS_REVIEW = "needs_review"


class EntryStatus(str, Enum):
    """Status of a champion's entry into a tournament."""

    REGISTERED = "registered"
    WITHDRAWN = "withdrawn"
    DISQUALIFIED = "disqualified"


class SnapshotType(str, Enum):
    """Moment at which a wallet snapshot was taken."""

    START = "start"
    END = "end"


class PayoutStatus(str, Enum):
    """On-chain payout state of a prize distribution."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Champion(Base, TimestampMixin):
    """
    A participant identity.

    The wallet address is what gets snapshotted for every entry the
    champion registers.
    """

    __tablename__ = "champions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    champion_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Relationships
    entries: Mapped[list["TournamentEntry"]] = relationship(
        "TournamentEntry", back_populates="champion"
    )
    stats: Mapped["ChampionStats | None"] = relationship(
        "ChampionStats", back_populates="champion", uselist=False
    )

    def __repr__(self) -> str:
        return f"<Champion {self.champion_name} ({self.wallet_address[:8]})>"


class TournamentTemplate(Base, TimestampMixin):
    """
    Reusable definition that instances are deployed from.

    One template per configured variant; the deployment scheduler
    creates it on first use.
    """

    __tablename__ = "tournament_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    tournament_type: Mapped[str] = mapped_column(String(20), default="weekly")
    trading_style: Mapped[str] = mapped_column(String(30), nullable=False)
    tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    entry_fee: Mapped[Decimal] = mapped_column(Numeric(20, 9), default=Decimal("0"))
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prize_pool_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("100")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    instances: Mapped[list["TournamentInstance"]] = relationship(
        "TournamentInstance", back_populates="template"
    )

    def __repr__(self) -> str:
        return f"<TournamentTemplate {self.name}>"


class TournamentInstance(Base, TimestampMixin):
    """
    A scheduled run of a template.

    Status only moves forward along the lifecycle state machine, except
    for cancellation and needs_review. Only the lifecycle engine writes
    status, counts, pool and actual timestamps.

    deployment_metadata format:
    {
        "variant": "Pure Wallet Bronze League",
        "tier": "bronze",
        "trading_style": "pure_wallet",
        "deployment_batch": "2026-10-19-pure_wallet",
        "deployed_at": "2026-10-18T00:00:00+00:00"
    }
    """

    __tablename__ = "tournament_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("tournament_templates.id"), nullable=True
    )
    tournament_name: Mapped[str] = mapped_column(String(250), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default=TournamentStatus.SCHEDULED.value, nullable=False
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    registration_opens: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    registration_closes: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    actual_start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    participant_count: Mapped[int] = mapped_column(Integer, default=0)
    total_prize_pool: Mapped[Decimal] = mapped_column(
        Numeric(20, 9), default=Decimal("0")
    )
    min_participants: Mapped[int] = mapped_column(Integer, default=2)

    deployment_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_reason: Mapped[str | None] = mapped_column(
        Text, nullable=True, doc="Why the instance needs manual remediation"
    )
    start_snapshot_report: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )
    end_snapshot_report: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )

    # Relationships
    template: Mapped["TournamentTemplate | None"] = relationship(
        "TournamentTemplate", back_populates="instances"
    )
    entries: Mapped[list["TournamentEntry"]] = relationship(
        "TournamentEntry", back_populates="tournament"
    )

    __table_args__ = (
        Index("idx_instances_status_start", "status", "start_time"),
        Index("idx_instances_template_start", "template_id", "start_time"),
    )

    @property
    def tier(self) -> str | None:
        """Tier recorded at deployment."""
        return (self.deployment_metadata or {}).get("tier")

    def __repr__(self) -> str:
        return f"<TournamentInstance {self.id} {self.tournament_name} ({self.status})>"


class TournamentEntry(Base, TimestampMixin):
    """
    A champion's registration in one tournament instance.

    Registration itself happens elsewhere; the snapshot manager links the
    start and end snapshots.
    """

    __tablename__ = "tournament_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tournament_instance_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tournament_instances.id"), nullable=False
    )
    champion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("champions.id"), nullable=False
    )
    entry_fee_paid: Mapped[Decimal] = mapped_column(Numeric(20, 9), default=Decimal("0"))
    trading_style: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=EntryStatus.REGISTERED.value, nullable=False
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    start_snapshot_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("wallet_snapshots.id", use_alter=True), nullable=True
    )
    end_snapshot_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("wallet_snapshots.id", use_alter=True), nullable=True
    )

    # Relationships
    tournament: Mapped["TournamentInstance"] = relationship(
        "TournamentInstance", back_populates="entries"
    )
    champion: Mapped["Champion"] = relationship("Champion", back_populates="entries")

    __table_args__ = (
        UniqueConstraint(
            "tournament_instance_id", "champion_id", name="uq_entry_tournament_champion"
        ),
        Index("idx_entries_tournament_status", "tournament_instance_id", "status"),
    )

    @property
    def wallet_address(self) -> str:
        return self.champion.wallet_address

    def __repr__(self) -> str:
        return f"<TournamentEntry {self.id} tournament={self.tournament_instance_id}>"


class WalletSnapshot(Base):
    """
    Point-in-time capture of a wallet's state.

    Insert-only. At most one snapshot per (entry, snapshot_type).

    holdings format:
    [
        {
            "mint": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
            "amount": "1500000",
            "decimals": 6,
            "ui_amount": 1.5
        }
    ]
    """

    __tablename__ = "wallet_snapshots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tournament_entries.id"), nullable=False
    )
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot_type: Mapped[str] = mapped_column(String(10), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    holdings: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    total_value: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        UniqueConstraint("entry_id", "snapshot_type", name="uq_snapshot_entry_type"),
        Index("idx_snapshots_address_time", "wallet_address", captured_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<WalletSnapshot {self.snapshot_type} entry={self.entry_id} value={self.total_value}>"


class PrizeDistribution(Base):
    """
    One prize awarded to a ranked champion.

    Created once per winner when prizes are finalized. Only the payout
    fields change afterwards.
    """

    __tablename__ = "prize_distributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tournament_instance_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tournament_instances.id"), nullable=False
    )
    champion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("champions.id"), nullable=False
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_amount: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    prize_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    performance_percentage: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    payout_status: Mapped[str] = mapped_column(
        String(20), default=PayoutStatus.PENDING.value, nullable=False
    )
    transaction_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)
    distributed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "tournament_instance_id", "champion_id", name="uq_prize_tournament_champion"
        ),
    )

    def __repr__(self) -> str:
        return f"<PrizeDistribution tournament={self.tournament_instance_id} rank={self.rank} amount={self.prize_amount}>"


class ChampionStats(Base, TimestampMixin):
    """
    Cumulative results per champion.

    Incremented read-modify-write after each tournament completion.
    """

    __tablename__ = "champion_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    champion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("champions.id"), unique=True, nullable=False
    )
    tournaments_played: Mapped[int] = mapped_column(Integer, default=0)
    tournaments_won: Mapped[int] = mapped_column(Integer, default=0)
    total_sol_earned: Mapped[Decimal] = mapped_column(
        Numeric(20, 9), default=Decimal("0")
    )
    current_win_streak: Mapped[int] = mapped_column(Integer, default=0)
    best_win_streak: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    champion: Mapped["Champion"] = relationship("Champion", back_populates="stats")

    def __repr__(self) -> str:
        return f"<ChampionStats champion={self.champion_id} won={self.tournaments_won}>"


class TournamentReport(Base):
    """Archived end-of-tournament summary."""

    __tablename__ = "tournament_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tournament_instance_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tournament_instances.id"), nullable=False
    )
    report_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<TournamentReport tournament={self.tournament_instance_id}>"


class JobRun(Base):
    """
    Task execution audit log.

    Every scheduled task run is logged here for:
    1. Monitoring and alerting
    2. Debugging failures
    3. Performance tracking
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'success', 'failed'"
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"
