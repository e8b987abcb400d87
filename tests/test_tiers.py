"""Tests for the tiered/progressive schedule calculator."""

from decimal import Decimal

from compensation_engine.calculators.tiers import (
    calculate_bracket_tax,
    calculate_flat_rate,
    calculate_tiered,
    coerce_tiers,
    round_to_cents,
    tiers_from_brackets,
)
from compensation_engine.types import TaxBracket, Tier

TIERS = [
    {"threshold": 0, "rate": "0.1"},
    {"threshold": 1000, "rate": "0.2"},
]


class TestCalculateTiered:
    """Test the shared tier algorithm."""

    def test_basis_spanning_two_tiers(self):
        """1000 at 10% plus 500 at 20%."""
        assert calculate_tiered(TIERS, Decimal("1500")) == Decimal("200")

    def test_basis_within_first_tier(self):
        """Basis inside the first tier."""
        assert calculate_tiered(TIERS, Decimal("800")) == Decimal("80")

    def test_zero_basis(self):
        """Zero basis gives zero."""
        assert calculate_tiered(TIERS, Decimal("0")) == Decimal("0")

    def test_basis_at_first_threshold_is_zero(self):
        """A basis at or below the first threshold yields nothing."""
        tiers = [{"threshold": 500, "rate": "0.1"}]
        assert calculate_tiered(tiers, Decimal("500")) == Decimal("0")
        assert calculate_tiered(tiers, Decimal("400")) == Decimal("0")

    def test_unsorted_tiers_are_sorted(self):
        """Tier order in config does not matter."""
        assert calculate_tiered(list(reversed(TIERS)), Decimal("1500")) == Decimal("200")

    def test_fixed_amount_added_per_reached_tier(self):
        """Fixed amount is added per reached tier."""
        tiers = [
            Tier(threshold=Decimal("0"), rate=Decimal("0"), fixed_amount=Decimal("10")),
            Tier(threshold=Decimal("100"), rate=Decimal("0.5"), fixed_amount=Decimal("5")),
        ]
        # 10 + (150 - 100) * 0.5 + 5
        assert calculate_tiered(tiers, Decimal("150")) == Decimal("40")
        # second tier not reached
        assert calculate_tiered(tiers, Decimal("100")) == Decimal("10")

    def test_empty_tiers(self):
        """Empty tiers give zero."""
        assert calculate_tiered([], Decimal("1000")) == Decimal("0")

    def test_malformed_entries_yield_zero(self):
        """Missing thresholds or non-mapping entries disable the whole list."""
        assert calculate_tiered([{"rate": "0.1"}], Decimal("1000")) == Decimal("0")
        assert calculate_tiered(["0.1"], Decimal("1000")) == Decimal("0")
        assert calculate_tiered([{"threshold": "abc", "rate": "0.1"}], Decimal("1000")) == Decimal("0")

    def test_non_list_config_yields_zero(self):
        """Non-list config gives zero."""
        assert calculate_tiered({"threshold": 0, "rate": "0.1"}, Decimal("1000")) == Decimal("0")
        assert calculate_tiered(None, Decimal("1000")) == Decimal("0")


class TestCoerceTiers:
    """Test tier configuration normalisation."""

    def test_returns_sorted_tiers(self):
        """Coerced tiers are sorted."""
        tiers = coerce_tiers(list(reversed(TIERS)))
        assert [t.threshold for t in tiers] == [Decimal("0"), Decimal("1000")]
        assert tiers[1].rate == Decimal("0.2")

    def test_malformed_returns_none(self):
        """Malformed config gives None."""
        assert coerce_tiers("0.1") is None
        assert coerce_tiers([{"rate": 1}]) is None
        assert coerce_tiers([{"threshold": True, "rate": 1}]) is None


class TestBracketTax:
    """Test tax brackets on top of the tier algorithm."""

    def test_tiers_from_brackets_converts_percentages(self):
        """Bracket percentages become rates."""
        brackets = [
            TaxBracket(income_min=Decimal("2000"), income_max=None, rate_percentage=Decimal("10")),
            TaxBracket(income_min=Decimal("0"), income_max=Decimal("2000"), rate_percentage=Decimal("0")),
        ]
        tiers = tiers_from_brackets(brackets)
        assert tiers[0] == Tier(threshold=Decimal("0"), rate=Decimal("0"))
        assert tiers[1].threshold == Decimal("2000")
        assert tiers[1].rate == Decimal("0.1")

    def test_progressive_bracket_tax(self):
        """Progressive bracket tax."""
        brackets = [
            TaxBracket(income_min=Decimal("0"), income_max=Decimal("2000"), rate_percentage=Decimal("0")),
            TaxBracket(income_min=Decimal("2000"), income_max=None, rate_percentage=Decimal("10")),
        ]
        assert calculate_bracket_tax(Decimal("4000"), brackets) == Decimal("200.00")
        assert calculate_bracket_tax(Decimal("1500"), brackets) == Decimal("0.00")
        assert calculate_bracket_tax(Decimal("-10"), brackets) == Decimal("0")

    def test_bracket_tax_rounds_half_up(self):
        """Bracket tax rounds half up."""
        brackets = [
            TaxBracket(income_min=Decimal("0"), income_max=None, rate_percentage=Decimal("2.5")),
        ]
        # 100.10 * 0.025 = 2.5025
        assert calculate_bracket_tax(Decimal("100.10"), brackets) == Decimal("2.50")
        # 100.20 * 0.025 = 2.505
        assert calculate_bracket_tax(Decimal("100.20"), brackets) == Decimal("2.51")

    def test_flat_rate_uses_first_bracket(self):
        """Flat rate uses the first bracket."""
        brackets = [
            TaxBracket(income_min=Decimal("0"), income_max=None, rate_percentage=Decimal("4")),
        ]
        assert calculate_flat_rate(Decimal("3000"), brackets) == Decimal("120.00")

    def test_flat_rate_annual_cap(self):
        """Annual cap limits flat-rate tax."""
        brackets = [
            TaxBracket(income_min=Decimal("0"), income_max=None, rate_percentage=Decimal("4")),
        ]
        assert calculate_flat_rate(Decimal("3000"), brackets, Decimal("100")) == Decimal("100.00")

    def test_flat_rate_without_brackets(self):
        """No brackets give zero."""
        assert calculate_flat_rate(Decimal("3000"), []) == Decimal("0")


def test_round_to_cents():
    assert round_to_cents(Decimal("5.025")) == Decimal("5.03")
    assert round_to_cents(Decimal("5.024")) == Decimal("5.02")
