"""
Purchase order pricing tests (no database).

Verifies:
- FOC units are delivered but not billed
- Percentage and amount discounts, capped at gross
- GST on the net amount with half-up rounding to the cent
"""

from decimal import Decimal

import pytest

from medisupply.domain.pricing import line_totals, order_totals


class TestLineTotals:

    def test_foc_units_are_not_billed(self):
        totals = line_totals(quantity=12, foc_quantity=2, unit_price_cents=500)
        assert totals.gross_cents == 5000
        assert totals.total_cents == 5000

    def test_percentage_discount_then_gst(self):
        totals = line_totals(
            quantity=10, foc_quantity=0, unit_price_cents=1000,
            discount_type="percentage", discount_value=Decimal("12.5"), gst_percentage=18,
        )
        assert totals.discount_cents == 1250
        assert totals.tax_cents == 1575
        assert totals.total_cents == 8750 + 1575

    def test_amount_discount_is_capped_at_gross(self):
        totals = line_totals(quantity=1, foc_quantity=0, unit_price_cents=300, discount_value=1000)
        assert totals.discount_cents == 300
        assert totals.total_cents == 0

    def test_half_cent_rounds_up(self):
        # 5% of 10 cents = 0.5 cent
        totals = line_totals(quantity=1, foc_quantity=0, unit_price_cents=10, gst_percentage=5)
        assert totals.tax_cents == 1

    @pytest.mark.parametrize("foc", [-1, 4])
    def test_foc_out_of_range(self, foc):
        with pytest.raises(ValueError):
            line_totals(quantity=3, foc_quantity=foc, unit_price_cents=100)

    def test_unknown_discount_type(self):
        with pytest.raises(ValueError):
            line_totals(quantity=1, foc_quantity=0, unit_price_cents=100, discount_type="bogus")


def test_order_totals_sum_lines():
    lines = [
        line_totals(quantity=2, foc_quantity=0, unit_price_cents=1000, gst_percentage=5),
        line_totals(quantity=1, foc_quantity=0, unit_price_cents=999, discount_value=99),
    ]
    totals = order_totals(lines)
    assert totals.sub_total_cents == 2999
    assert totals.discount_total_cents == 99
    assert totals.tax_total_cents == 100
    assert totals.grand_total_cents == 2999 - 99 + 100
