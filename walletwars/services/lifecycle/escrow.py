"""Prize escrow interface.

On-chain transfers are executed outside this service. The engine hands
over one instruction per paid rank and records the outcome on the prize
row.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class PayoutInstruction:
    """Transfer of one prize to one champion."""

    champion_id: int
    wallet_address: str
    amount: Decimal
    rank: int


@dataclass(frozen=True)
class PayoutResult:
    success: bool
    transaction_ref: str | None = None
    error: str | None = None


class PrizeEscrow(Protocol):
    """Executes prize transfers for a completed tournament."""

    async def execute_payouts(
        self,
        tournament_id: int,
        instructions: list[PayoutInstruction],
    ) -> dict[int, PayoutResult]:
        """Returns a result per champion id."""
        ...
