"""Error taxonomy for the tournament engine.

Per-entrant snapshot errors are aggregated by the snapshot manager.
Per-instance transition errors are caught by the lifecycle engine and
never escape a driver pass.
"""

from typing import Any


class TournamentEngineError(Exception):
    """Base class for tournament engine errors."""

    pass


class ProviderError(TournamentEngineError):
    """Snapshot source unreachable or returned a malformed response."""

    def __init__(self, message: str, provider: str | None = None, retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable


class AllProvidersFailedError(ProviderError):
    """Every provider in the fallback chain failed."""

    def __init__(self, errors: dict[str, Exception]):
        summary = ", ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(f"All wallet providers failed. {summary}", retryable=False)
        self.errors = errors


class StorageError(TournamentEngineError):
    """Record store read or write failed."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class InsufficientParticipantsError(TournamentEngineError):
    """Registration closed below the tournament minimum."""

    def __init__(self, tournament_id: int, registered: int, minimum: int):
        super().__init__(
            f"Tournament {tournament_id} has {registered} participants, minimum is {minimum}"
        )
        self.tournament_id = tournament_id
        self.registered = registered
        self.minimum = minimum


class RankingUnavailableError(TournamentEngineError):
    """Fewer than two entrants have both snapshots at tournament end."""

    def __init__(self, tournament_id: int, ranked: int, details: dict[str, Any] | None = None):
        super().__init__(
            f"Tournament {tournament_id} has {ranked} rankable entrants, need at least 2"
        )
        self.tournament_id = tournament_id
        self.ranked = ranked
        self.details = details or {}


class DuplicateTransitionError(TournamentEngineError):
    """Another worker already holds the in-flight guard for this transition."""

    def __init__(self, tournament_id: int, transition: str):
        super().__init__(f"Transition {transition} already in flight for tournament {tournament_id}")
        self.tournament_id = tournament_id
        self.transition = transition


class InvalidTransitionError(TournamentEngineError):
    """Requested status change is not allowed by the state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target
