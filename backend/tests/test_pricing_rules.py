"""
test_pricing_rules.py — Unit tests for rounding, adjustments and PriceSource.

Tests cover:
  - round2 / round3: half-up, never banker's rounding
  - to_decimal: float handling, decimal comma with dot thousands separators,
    rejection of non-numbers
  - Adjustment.apply: percent clamps at zero, fixed ignores the base and
    is never negative
  - parse_adjustment: the single-field "10%" / "500" form input
  - tier label parsing

All tests are pure unit tests; no database required.
"""

from decimal import Decimal

import pytest

from budgeteer.services.errors import ValidationError
from budgeteer.services.pricing_rules import (
    Adjustment,
    AdjustmentKind,
    LaborTier,
    MaterialTier,
    PriceSource,
    PriceSourceKind,
    make_adjustment,
    parse_adjustment,
    parse_labor_tier,
    parse_material_tier,
    round2,
    round3,
    to_decimal,
    to_money,
)


class TestRounding:

    def test_quantity_rounds_half_up_to_three_places(self):
        assert round3("2.5005") == Decimal("2.501")

    def test_money_rounds_half_up_from_float(self):
        """10.005 as a float is 10.00499…; going through str() keeps it half-up."""
        assert round2(10.005) == Decimal("10.01")

    def test_half_up_not_bankers(self):
        assert round2("0.125") == Decimal("0.13")
        assert round2("0.135") == Decimal("0.14")

    def test_negative_half_rounds_away_from_zero(self):
        assert round2("-1.005") == Decimal("-1.01")

    def test_out_of_range_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            round3("1e26", field="quantity")
        assert exc.value.field == "quantity"

    def test_money_bound(self):
        assert to_money("999999999999.99") == Decimal("999999999999.99")
        with pytest.raises(ValidationError) as exc:
            to_money("999999999999.995", field="material_p1")
        assert exc.value.field == "material_p1"
        with pytest.raises(ValidationError):
            to_money(Decimal("-1e12"))


class TestToDecimal:

    def test_decimal_comma(self):
        assert to_decimal("10,5") == Decimal("10.5")

    def test_dots_are_thousands_separators_next_to_a_comma(self):
        assert to_decimal("1.234,56") == Decimal("1234.56")
        assert to_decimal("1.234") == Decimal("1.234")

    def test_garbage_rejected_with_field(self):
        with pytest.raises(ValidationError) as exc:
            to_decimal("abc", field="quantity")
        assert exc.value.field == "quantity"

    def test_infinity_rejected(self):
        with pytest.raises(ValidationError):
            to_decimal("Infinity")

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            to_decimal(True)


class TestAdjustment:

    def test_percent_increase(self):
        """1000 with +10% → 1100."""
        assert Adjustment.percent(10).apply(Decimal("1000.00")) == Decimal("1100.00")

    def test_fixed_ignores_base(self):
        assert Adjustment.fixed(500).apply(Decimal("1234.56")) == Decimal("500.00")

    def test_percent_below_minus_hundred_clamps_to_zero(self):
        assert Adjustment.percent(-150).apply(Decimal("1000.00")) == Decimal("0.00")

    def test_describe(self):
        assert Adjustment.percent(10).describe() == "+10.00%"
        assert Adjustment.fixed(500).describe() == "fixed 500.00"

    def test_make_adjustment_requires_both_parts(self):
        assert make_adjustment(None, 10) is None
        assert make_adjustment("percent", None) is None
        assert make_adjustment("fixed", "250").kind is AdjustmentKind.FIXED

    def test_make_adjustment_rejects_unknown_kind(self):
        with pytest.raises(ValidationError) as exc:
            make_adjustment("bonus", 5)
        assert exc.value.field == "adjustment_kind"

    def test_negative_fixed_rejected(self):
        with pytest.raises(ValidationError) as exc:
            Adjustment.fixed(-1)
        assert exc.value.field == "adjustment"
        with pytest.raises(ValidationError):
            parse_adjustment("-500")
        with pytest.raises(ValidationError):
            make_adjustment("fixed", "-5")
        # negative percent is allowed; the sale total clamps at zero
        assert parse_adjustment("-5%").value == Decimal("-5.00")


class TestParseAdjustment:

    @pytest.mark.parametrize("raw, kind, value", [
        ("10%", AdjustmentKind.PERCENT, Decimal("10.00")),
        ("-5 %", AdjustmentKind.PERCENT, Decimal("-5.00")),
        ("500", AdjustmentKind.FIXED, Decimal("500.00")),
        ("12,5%", AdjustmentKind.PERCENT, Decimal("12.50")),
    ])
    def test_forms(self, raw, kind, value):
        adjustment = parse_adjustment(raw)
        assert adjustment.kind is kind
        assert adjustment.value == value

    def test_blank_means_no_adjustment(self):
        assert parse_adjustment("   ") is None
        assert parse_adjustment(None) is None


class TestPriceSource:

    def test_unset_counts_as_zero(self):
        source = PriceSource.unset()
        assert source.stored is None
        assert source.for_totals == Decimal("0.00")

    def test_resolved_rounds(self):
        source = PriceSource.resolved("32.005")
        assert source.kind is PriceSourceKind.RESOLVED
        assert source.stored == Decimal("32.01")

    def test_manual_without_value(self):
        assert PriceSource.manual(None).stored is None


class TestTierParsing:

    def test_case_insensitive(self):
        assert parse_material_tier("p2") is MaterialTier.P2
        assert parse_labor_tier(" m1 ") is LaborTier.M1

    def test_blank_is_none(self):
        assert parse_material_tier("") is None

    def test_unknown_label_rejected(self):
        with pytest.raises(ValidationError) as exc:
            parse_labor_tier("M4")
        assert exc.value.field == "labor_tier"
