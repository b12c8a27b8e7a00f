"""Unit tests for the prize distribution calculator."""

from decimal import Decimal

import pytest

from walletwars.services.prizes import (
    calculate_distribution,
    select_percentages,
    validate_tier_table,
)

TABLE = {
    10: [Decimal(p) for p in (50, 30, 20)],
    100: [Decimal(p) for p in (35, 25, 15, 10, 8, 7)],
}


class TestSelectPercentages:
    """Test tier selection."""

    def test_largest_qualifying_threshold_wins(self):
        """25 participants use the 10+ distribution."""
        assert select_percentages(25, TABLE) == [Decimal(50), Decimal(30), Decimal(20)]

    def test_exact_threshold_qualifies(self):
        assert len(select_percentages(100, TABLE)) == 6

    def test_below_every_threshold_is_winner_takes_all(self):
        """Fewer participants than the smallest threshold."""
        assert select_percentages(4, TABLE) == [Decimal(100)]

    def test_capped_at_participant_count(self):
        """Never more paid ranks than participants."""
        table = {2: [Decimal(p) for p in (50, 30, 20)]}

        assert select_percentages(2, table) == [Decimal(50), Decimal(30)]

    def test_no_participants(self):
        assert select_percentages(0, TABLE) == []


class TestCalculateDistribution:
    """Test prize amounts."""

    def test_pool_split_by_percentages(self):
        """2.3 SOL across 25 participants pays the top three."""
        amounts = calculate_distribution(Decimal("2.3"), 25, TABLE)

        assert amounts == [Decimal("1.15"), Decimal("0.69"), Decimal("0.46")]

    def test_amounts_never_exceed_pool(self):
        amounts = calculate_distribution(Decimal("10"), 150, TABLE)

        assert sum(amounts) == Decimal("10")
        assert amounts == sorted(amounts, reverse=True)

    def test_winner_takes_all(self):
        assert calculate_distribution(Decimal("0.5"), 3, TABLE) == [Decimal("0.5")]

    def test_zero_pool_pays_nothing(self):
        amounts = calculate_distribution(0, 25, TABLE)

        assert all(a == 0 for a in amounts)

    def test_accepts_float_pool(self):
        """Floats go through str() so no binary noise reaches the amounts."""
        assert calculate_distribution(0.1, 1, TABLE) == [Decimal("0.1")]


class TestValidateTierTable:
    """Test configuration-time validation."""

    def test_valid_table(self):
        validate_tier_table(TABLE)

    def test_over_one_hundred_percent(self):
        with pytest.raises(ValueError, match="over 100"):
            validate_tier_table({5: [Decimal(60), Decimal(50)]})

    def test_non_positive_threshold(self):
        with pytest.raises(ValueError, match="threshold"):
            validate_tier_table({0: [Decimal(100)]})

    def test_non_positive_percentage(self):
        with pytest.raises(ValueError, match="non-positive"):
            validate_tier_table({5: [Decimal(60), Decimal(0)]})

    def test_empty_distribution(self):
        with pytest.raises(ValueError, match="no percentages"):
            validate_tier_table({5: []})
