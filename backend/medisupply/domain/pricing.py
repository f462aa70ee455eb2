# Overview: Purchase-order line and header totals (pure, integer cents).

"""
Line pricing rules

- Free-of-charge units (foc) are delivered but not billed:
    billable = quantity - foc
    gross    = billable * unit_price_cents
- Discount is either an amount in cents or a percentage of gross, capped at gross.
- GST applies to the net (gross - discount).
- All rounding is nearest-cent, half-up.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

DISCOUNT_TYPES = frozenset({"amount", "percentage"})


@dataclass(frozen=True)
class LineTotals:
    gross_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


@dataclass(frozen=True)
class OrderTotals:
    sub_total_cents: int
    discount_total_cents: int
    tax_total_cents: int
    grand_total_cents: int


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_totals(
    *,
    quantity: int,
    foc_quantity: int,
    unit_price_cents: int,
    discount_type: str = "amount",
    discount_value: Decimal | int = 0,
    gst_percentage: Decimal | int = 0,
) -> LineTotals:
    if discount_type not in DISCOUNT_TYPES:
        raise ValueError(f"discount_type must be one of {sorted(DISCOUNT_TYPES)}")
    if foc_quantity < 0 or foc_quantity > quantity:
        raise ValueError("foc_quantity must be between 0 and quantity")

    gross = (quantity - foc_quantity) * unit_price_cents
    discount_value = Decimal(discount_value)

    if discount_type == "percentage":
        discount = _round_cents(Decimal(gross) * discount_value / Decimal(100))
    else:
        discount = _round_cents(discount_value)
    discount = max(0, min(discount, gross))

    net = gross - discount
    tax = _round_cents(Decimal(net) * Decimal(gst_percentage) / Decimal(100))

    return LineTotals(gross_cents=gross, discount_cents=discount, tax_cents=tax, total_cents=net + tax)


def order_totals(lines: list[LineTotals]) -> OrderTotals:
    sub_total = sum(line.gross_cents for line in lines)
    discount_total = sum(line.discount_cents for line in lines)
    tax_total = sum(line.tax_cents for line in lines)
    return OrderTotals(
        sub_total_cents=sub_total,
        discount_total_cents=discount_total,
        tax_total_cents=tax_total,
        grand_total_cents=sub_total - discount_total + tax_total,
    )
