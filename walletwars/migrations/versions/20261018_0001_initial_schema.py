"""Initial schema for WalletWars.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

This migration creates all the core tables for the tournament engine:
- Champions and ChampionStats
- TournamentTemplates and TournamentInstances (lifecycle status)
- TournamentEntries and WalletSnapshots (start/end per entry)
- PrizeDistributions (one per tournament and champion)
- TournamentReports for archived results
- JobRuns for task audit logging

Entries and snapshots reference each other; the entry -> snapshot keys
are added after both tables exist.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Champions
    op.create_table(
        "champions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("champion_name", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("wallet_address"),
    )

    # Tournament templates
    op.create_table(
        "tournament_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("tournament_type", sa.String(length=20), nullable=True),
        sa.Column("trading_style", sa.String(length=30), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=True),
        sa.Column("entry_fee", sa.Numeric(20, 9), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("prize_pool_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, default=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    # Tournament instances
    op.create_table(
        "tournament_instances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("tournament_name", sa.String(length=250), nullable=False),
        sa.Column(
            "status",
            sa.String(length=30),
            nullable=False,
            comment="scheduled, registering, registration_closed, active, ended, "
            "complete, cancelled, needs_review",
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registration_opens", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registration_closes", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("participant_count", sa.Integer(), nullable=True, default=0),
        sa.Column("total_prize_pool", sa.Numeric(20, 9), nullable=True, default=0),
        sa.Column("min_participants", sa.Integer(), nullable=True, default=2),
        sa.Column("deployment_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("review_reason", sa.Text(), nullable=True),
        sa.Column("start_snapshot_report", postgresql.JSONB(), nullable=True),
        sa.Column("end_snapshot_report", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["tournament_templates.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_instances_status_start",
        "tournament_instances",
        ["status", "start_time"],
    )
    op.create_index(
        "idx_instances_template_start",
        "tournament_instances",
        ["template_id", "start_time"],
    )

    # Tournament entries
    op.create_table(
        "tournament_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_instance_id", sa.Integer(), nullable=False),
        sa.Column("champion_id", sa.Integer(), nullable=False),
        sa.Column("entry_fee_paid", sa.Numeric(20, 9), nullable=True),
        sa.Column("trading_style", sa.String(length=30), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_snapshot_id", sa.BigInteger(), nullable=True),
        sa.Column("end_snapshot_id", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tournament_instance_id"], ["tournament_instances.id"]),
        sa.ForeignKeyConstraint(["champion_id"], ["champions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tournament_instance_id", "champion_id", name="uq_entry_tournament_champion"
        ),
    )
    op.create_index(
        "idx_entries_tournament_status",
        "tournament_entries",
        ["tournament_instance_id", "status"],
    )

    # Wallet snapshots - insert-only
    op.create_table(
        "wallet_snapshots",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("snapshot_type", sa.String(length=10), nullable=False),
        sa.Column("balance", sa.Numeric(20, 9), nullable=False),
        sa.Column("holdings", postgresql.JSONB(), nullable=True),
        sa.Column("total_value", sa.Numeric(20, 9), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_response", postgresql.JSONB(), nullable=True),
        sa.ForeignKeyConstraint(["entry_id"], ["tournament_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "snapshot_type", name="uq_snapshot_entry_type"),
    )
    op.create_index(
        "idx_snapshots_address_time",
        "wallet_snapshots",
        ["wallet_address", sa.text("captured_at DESC")],
    )
    op.create_foreign_key(
        "fk_entries_start_snapshot",
        "tournament_entries",
        "wallet_snapshots",
        ["start_snapshot_id"],
        ["id"],
    )
    op.create_foreign_key(
        "fk_entries_end_snapshot",
        "tournament_entries",
        "wallet_snapshots",
        ["end_snapshot_id"],
        ["id"],
    )

    # Prize distributions - unique per tournament and champion
    op.create_table(
        "prize_distributions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_instance_id", sa.Integer(), nullable=False),
        sa.Column("champion_id", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("prize_amount", sa.Numeric(20, 9), nullable=False),
        sa.Column("prize_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("performance_percentage", sa.Numeric(16, 6), nullable=False),
        sa.Column("payout_status", sa.String(length=20), nullable=False),
        sa.Column("transaction_ref", sa.String(length=120), nullable=True),
        sa.Column("distributed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tournament_instance_id"], ["tournament_instances.id"]),
        sa.ForeignKeyConstraint(["champion_id"], ["champions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tournament_instance_id", "champion_id", name="uq_prize_tournament_champion"
        ),
    )

    # Champion stats
    op.create_table(
        "champion_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("champion_id", sa.Integer(), nullable=False),
        sa.Column("tournaments_played", sa.Integer(), nullable=True, default=0),
        sa.Column("tournaments_won", sa.Integer(), nullable=True, default=0),
        sa.Column("total_sol_earned", sa.Numeric(20, 9), nullable=True, default=0),
        sa.Column("current_win_streak", sa.Integer(), nullable=True, default=0),
        sa.Column("best_win_streak", sa.Integer(), nullable=True, default=0),
        *_timestamps(),
        sa.ForeignKeyConstraint(["champion_id"], ["champions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("champion_id"),
    )

    # Tournament reports
    op.create_table(
        "tournament_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_instance_id", sa.Integer(), nullable=False),
        sa.Column("report_data", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tournament_instance_id"], ["tournament_instances.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    # Job runs for task audit
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=True, default=0),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("job_runs")
    op.drop_table("tournament_reports")
    op.drop_table("champion_stats")
    op.drop_table("prize_distributions")
    op.drop_constraint("fk_entries_end_snapshot", "tournament_entries", type_="foreignkey")
    op.drop_constraint("fk_entries_start_snapshot", "tournament_entries", type_="foreignkey")
    op.drop_index("idx_snapshots_address_time", table_name="wallet_snapshots")
    op.drop_table("wallet_snapshots")
    op.drop_index("idx_entries_tournament_status", table_name="tournament_entries")
    op.drop_table("tournament_entries")
    op.drop_index("idx_instances_template_start", table_name="tournament_instances")
    op.drop_index("idx_instances_status_start", table_name="tournament_instances")
    op.drop_table("tournament_instances")
    op.drop_table("tournament_templates")
    op.drop_table("champions")
