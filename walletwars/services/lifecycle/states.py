"""Tournament lifecycle state machine.

    scheduled -> registering -> registration_closed -> active -> ended -> complete
                                        |                          |
                                        +-> cancelled              +-> needs_review

Every status before ended can be cancelled manually. Ended belongs to the
finalization sequence and only leaves for complete or needs_review.
Evaluation is pure: given an instance and the current time it names the
one transition that is due, if any.
"""

from datetime import datetime
from enum import Enum

from walletwars.models.domain import TournamentInstance, TournamentStatus
from walletwars.services.errors import InvalidTransitionError

S = TournamentStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    S.SCHEDULED.value: frozenset({S.REGISTERING.value, S.CANCELLED.value}),
    S.REGISTERING.value: frozenset({S.REGISTRATION_CLOSED.value, S.CANCELLED.value}),
    S.REGISTRATION_CLOSED.value: frozenset({S.ACTIVE.value, S.CANCELLED.value}),
    S.ACTIVE.value: frozenset({S.ENDED.value, S.CANCELLED.value}),
    S.ENDED.value: frozenset({S.COMPLETE.value, S.NEEDS_REVIEW.value}),
    S.COMPLETE.value: frozenset(),
    S.CANCELLED.value: frozenset(),
    S.NEEDS_REVIEW.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)
NON_TERMINAL_STATUSES = frozenset(ALLOWED_TRANSITIONS) - TERMINAL_STATUSES

# Forward order, used to prove monotonic progress
STATUS_ORDER = {
    S.SCHEDULED.value: 0,
    S.REGISTERING.value: 1,
    S.REGISTRATION_CLOSED.value: 2,
    S.ACTIVE.value: 3,
    S.ENDED.value: 4,
    S.COMPLETE.value: 5,
}


class TransitionKind(str, Enum):
    """Time-driven transitions the engine can fire."""

    OPEN_REGISTRATION = "open_registration"
    CLOSE_REGISTRATION = "close_registration"
    START = "start"
    END = "end"
    RECOVER = "recover"
    CANCEL = "cancel"

    @property
    def guard_kind(self) -> str:
        """
        Guard key component for this transition.

        Recovery of an interrupted finalization shares the end guard, so it
        can never run while the end sequence is still in flight.
        """
        if self is TransitionKind.RECOVER:
            return TransitionKind.END.value
        return self.value


# A manual cancel holds the guard of the transition that leaves its status,
# so it waits out an end sequence instead of overtaking it
CANCEL_GUARD_KINDS = {
    S.SCHEDULED.value: TransitionKind.OPEN_REGISTRATION.value,
    S.REGISTERING.value: TransitionKind.CLOSE_REGISTRATION.value,
    S.REGISTRATION_CLOSED.value: TransitionKind.START.value,
    S.ACTIVE.value: TransitionKind.END.value,
}


def cancel_guard_kind(status: str | None) -> str:
    return CANCEL_GUARD_KINDS.get(status, TransitionKind.CANCEL.value)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, target: str) -> None:
    """
    Raises:
        InvalidTransitionError: If the state table forbids the move
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def evaluate_transition(instance: TournamentInstance, now: datetime) -> TransitionKind | None:
    """Return the transition due for an instance at ``now``."""
    status = instance.status

    if status == S.SCHEDULED.value and now >= instance.registration_opens:
        return TransitionKind.OPEN_REGISTRATION
    if status == S.REGISTERING.value and now >= instance.registration_closes:
        return TransitionKind.CLOSE_REGISTRATION
    if status == S.REGISTRATION_CLOSED.value and now >= instance.start_time:
        return TransitionKind.START
    if status == S.ACTIVE.value and now >= instance.end_time:
        return TransitionKind.END
    if status == S.ENDED.value:
        # Found at rest in ended: the finalization that set it was interrupted
        return TransitionKind.RECOVER
    return None
