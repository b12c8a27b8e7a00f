"""Tournament catalog configuration.

Defines the deployment cadence, the tournament variants created on each
deployment day, lifecycle timing and the prize tables per tier.

Values are read from the ``tournaments`` section of defaults.yaml; every
field has a built-in fallback so the engine runs without the file.
"""

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from functools import lru_cache
from typing import Any

import structlog

from walletwars.config.settings import Settings, get_settings
from walletwars.services.prizes.calculator import TierTable, validate_tier_table

logger = structlog.get_logger(__name__)

WEEKDAYS = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]

# Used when an instance's tier has no table of its own
DEFAULT_PRIZE_TABLE: TierTable = {
    2: [Decimal(p) for p in (70, 30)],
    3: [Decimal(p) for p in (50, 30, 20)],
    5: [Decimal(p) for p in (40, 25, 15, 12, 8)],
    10: [Decimal(p) for p in (30, 20, 15, 10, 8, 5, 4, 3, 3, 2)],
    20: [
        Decimal(p)
        for p in (25, 15, 10, 8, 6, 5, 4, 3, 3, 2, 2, 2, 2, 2, 2, 1, 1, 1, 1, 1)
    ],
}

STANDARD_PRIZE_TABLE: TierTable = {
    10: [Decimal(p) for p in (50, 30, 20)],
    100: [Decimal(p) for p in (35, 25, 15, 10, 8, 7)],
    500: [Decimal(p) for p in (30, 20, 15, 10, 8, 7, 5, 3, 2)],
}


@dataclass
class TournamentVariant:
    """One tournament created on every deployment day."""

    name: str
    trading_style: str
    tier: str
    max_participants: int
    min_participants: int
    entry_fee: Decimal
    duration_days: int = 7
    prize_pool_percentage: Decimal = Decimal("85")
    tournament_type: str = "weekly"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TournamentVariant":
        return cls(
            name=data["name"],
            trading_style=data["trading_style"],
            tier=data["tier"],
            max_participants=int(data["max_participants"]),
            min_participants=int(data["min_participants"]),
            entry_fee=Decimal(str(data["entry_fee"])),
            duration_days=int(data.get("duration_days", 7)),
            prize_pool_percentage=Decimal(str(data.get("prize_pool_percentage", 85))),
            tournament_type=data.get("tournament_type", "weekly"),
        )


@dataclass
class DeploymentSchedule:
    """Weekdays and UTC time of day on which tournaments start."""

    weekdays: list[str] = field(default_factory=lambda: ["monday", "thursday"])
    time_of_day: time = time(14, 0, 0)

    def is_deployment_day(self, day: date) -> bool:
        return WEEKDAYS[day.weekday()] in self.weekdays


@dataclass
class TimingConfig:
    """Lifecycle timing relative to a tournament's start."""

    registration_opens_days_before: int = 3
    registration_close_minutes_before_start: int = 10
    advance_deployment_days: int = 28
    max_deployment_dates: int = 8
    existence_window_minutes: int = 60
    min_deploy_interval_seconds: int = 60


@dataclass
class TournamentConfig:
    """Complete tournament catalog configuration."""

    schedule: DeploymentSchedule = field(default_factory=DeploymentSchedule)
    timing: TimingConfig = field(default_factory=TimingConfig)
    variants: list[TournamentVariant] = field(default_factory=list)
    prize_tables: dict[str, TierTable] = field(
        default_factory=lambda: {"default": DEFAULT_PRIZE_TABLE}
    )

    def prize_table_for(self, tier: str | None) -> TierTable:
        """Get the prize table for a tier, falling back to the default table."""
        if tier and tier in self.prize_tables:
            return self.prize_tables[tier]
        return self.prize_tables.get("default", DEFAULT_PRIZE_TABLE)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TournamentConfig":
        """Build configuration from the ``tournaments`` section of defaults.yaml."""
        schedule_data = data.get("schedule", {})
        schedule = DeploymentSchedule()
        if "weekdays" in schedule_data:
            weekdays = [d.lower() for d in schedule_data["weekdays"]]
            unknown = [d for d in weekdays if d not in WEEKDAYS]
            if unknown:
                raise ValueError(f"Unknown deployment weekdays: {unknown}")
            schedule.weekdays = weekdays
        if "time_of_day" in schedule_data:
            schedule.time_of_day = time.fromisoformat(str(schedule_data["time_of_day"]))

        timing = TimingConfig(**data.get("timing", {}))

        variants = [TournamentVariant.from_dict(v) for v in data.get("variants", [])]

        prize_tables: dict[str, TierTable] = {"default": DEFAULT_PRIZE_TABLE}
        for tier, table in (data.get("prize_tables") or {}).items():
            parsed = {
                int(threshold): [Decimal(str(p)) for p in percentages]
                for threshold, percentages in table.items()
            }
            validate_tier_table(parsed)
            prize_tables[tier] = parsed

        return cls(
            schedule=schedule,
            timing=timing,
            variants=variants,
            prize_tables=prize_tables,
        )


def load_tournament_config(settings: Settings | None = None) -> TournamentConfig:
    """Load tournament configuration from defaults.yaml."""
    settings = settings or get_settings()
    data = settings.load_defaults_config().get("tournaments")
    if not data:
        logger.warning("tournament_config_missing", path=str(settings.config_path))
        return TournamentConfig(prize_tables={
            "default": DEFAULT_PRIZE_TABLE,
            "standard": STANDARD_PRIZE_TABLE,
        })
    return TournamentConfig.from_dict(data)


@lru_cache
def get_tournament_config() -> TournamentConfig:
    """Get cached tournament configuration."""
    return load_tournament_config()
