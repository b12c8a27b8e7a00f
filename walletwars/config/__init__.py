"""Configuration for WalletWars."""

from walletwars.config.settings import Settings, get_settings
from walletwars.config.tournaments import (
    TournamentConfig,
    TournamentVariant,
    get_tournament_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "TournamentConfig",
    "TournamentVariant",
    "get_tournament_config",
]
