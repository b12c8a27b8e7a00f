"""Prize distribution calculator.

Maps a prize pool and a participant count onto a tier table:

    tier_table = {10: [50, 30, 20], 100: [35, 25, 15, 10, 8, 7]}

The distribution with the largest threshold <= participant_count is used.
If no threshold qualifies, the winner takes the whole pool.
Each percentage becomes an amount of pool * pct / 100 for that rank;
ranks beyond the list receive nothing and are omitted.
"""

from decimal import Decimal

TierTable = dict[int, list[Decimal]]

WINNER_TAKES_ALL = [Decimal("100")]


def select_percentages(participant_count: int, tier_table: TierTable) -> list[Decimal]:
    """
    Select the percentage list for a participant count.

    Returns percentages for paid ranks, capped at the participant count.
    """
    if participant_count <= 0:
        return []

    eligible = [t for t in tier_table if t <= participant_count]
    if eligible:
        percentages = list(tier_table[max(eligible)])
    else:
        percentages = list(WINNER_TAKES_ALL)

    return [Decimal(str(p)) for p in percentages[:participant_count]]


def calculate_distribution(
    total_pool: Decimal | float | int,
    participant_count: int,
    tier_table: TierTable,
) -> list[Decimal]:
    """
    Calculate prize amounts for ranks 1..n.

    Args:
        total_pool: Prize pool in SOL
        participant_count: Number of ranked participants
        tier_table: Minimum participants -> percentages

    Returns:
        Prize amounts in rank order
    """
    pool = Decimal(str(total_pool))
    return [
        pool * pct / Decimal("100")
        for pct in select_percentages(participant_count, tier_table)
    ]


def validate_tier_table(tier_table: TierTable) -> None:
    """
    Validate a tier table at configuration time.

    Raises:
        ValueError: If a threshold is not positive, a percentage is not
            positive, or a distribution sums to more than 100
    """
    for threshold, percentages in tier_table.items():
        if threshold < 1:
            raise ValueError(f"Tier threshold must be positive: {threshold}")
        if not percentages:
            raise ValueError(f"Tier {threshold} has no percentages")
        if any(Decimal(str(p)) <= 0 for p in percentages):
            raise ValueError(f"Tier {threshold} has non-positive percentages")
        total = sum(Decimal(str(p)) for p in percentages)
        if total > 100:
            raise ValueError(f"Tier {threshold} percentages sum to {total}, over 100")
