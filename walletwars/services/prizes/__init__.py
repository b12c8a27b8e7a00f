"""Prize distribution module for WalletWars."""

from walletwars.services.prizes.calculator import (
    TierTable,
    calculate_distribution,
    select_percentages,
    validate_tier_table,
)

__all__ = [
    "TierTable",
    "calculate_distribution",
    "select_percentages",
    "validate_tier_table",
]
