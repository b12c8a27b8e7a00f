"""Tournament lifecycle automation."""

from walletwars.services.lifecycle.engine import (
    NOT_ENOUGH_PARTICIPANTS,
    TournamentLifecycleEngine,
    TransitionOutcome,
    TransitionResult,
    compute_prize_pool,
)
from walletwars.services.lifecycle.escrow import PayoutInstruction, PayoutResult, PrizeEscrow
from walletwars.services.lifecycle.guard import (
    InMemoryTransitionGuard,
    RedisTransitionGuard,
    TransitionGuard,
)
from walletwars.services.lifecycle.states import (
    ALLOWED_TRANSITIONS,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    TransitionKind,
    evaluate_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InMemoryTransitionGuard",
    "NON_TERMINAL_STATUSES",
    "NOT_ENOUGH_PARTICIPANTS",
    "PayoutInstruction",
    "PayoutResult",
    "PrizeEscrow",
    "RedisTransitionGuard",
    "TERMINAL_STATUSES",
    "TournamentLifecycleEngine",
    "TransitionGuard",
    "TransitionKind",
    "TransitionOutcome",
    "TransitionResult",
    "compute_prize_pool",
    "evaluate_transition",
]
