# Overview: Pure stock-quantity rules over an immutable inventory snapshot.

"""
Stock rules

Every function takes a StockSnapshot and a requested change and returns a
StockChange (the new snapshot plus the deltas to persist), or raises a
DomainError. Nothing here touches the database; the repository applies the
deltas with a conditional UPDATE that re-checks the same guard.

INVARIANTS (hold for every returned snapshot):
- current >= 0
- 0 <= reserved <= current
- available == current - reserved >= 0
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..errors import InsufficientStock, NotReady, ValidationError

WRITE_OFF_TYPES = frozenset({"expired", "damaged", "lost"})

# movement_type values recorded in stock_movements
MOVEMENT_TYPES = frozenset({
    "inward", "outward", "transfer", "adjustment", "return", "utilization",
}) | WRITE_OFF_TYPES


@dataclass(frozen=True)
class StockSnapshot:
    current: int
    reserved: int = 0
    is_active: bool = True

    @property
    def available(self) -> int:
        return self.current - self.reserved


@dataclass(frozen=True)
class StockChange:
    """
    Result of a stock rule.

    movement_type is None for pure reservation changes; those are logged as
    StockReservation rows instead of movements.
    """
    before: StockSnapshot
    after: StockSnapshot
    quantity_delta: int
    reserved_delta: int
    movement_type: str | None


def _require_qty(qty: int) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("quantity must be a positive integer")


def _require_active(snapshot: StockSnapshot) -> None:
    if not snapshot.is_active:
        raise NotReady("Inventory record is inactive")


def _change(snapshot: StockSnapshot, dc: int, dr: int, movement_type: str | None) -> StockChange:
    after = replace(snapshot, current=snapshot.current + dc, reserved=snapshot.reserved + dr)
    return StockChange(before=snapshot, after=after, quantity_delta=dc, reserved_delta=dr,
                       movement_type=movement_type)


def add_stock(snapshot: StockSnapshot, qty: int, movement_type: str = "inward") -> StockChange:
    _require_qty(qty)
    _require_active(snapshot)
    return _change(snapshot, qty, 0, movement_type)


def remove_stock(snapshot: StockSnapshot, qty: int, movement_type: str = "outward") -> StockChange:
    """Decrement current stock; never touches reserved units."""
    _require_qty(qty)
    _require_active(snapshot)
    if qty > snapshot.available:
        raise InsufficientStock(requested=qty, available=snapshot.available)
    return _change(snapshot, -qty, 0, movement_type)


def adjust_stock(snapshot: StockSnapshot, delta: int) -> StockChange:
    """Signed correction (stock count); a negative delta obeys remove rules."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("adjustment must be a non-zero integer")
    if delta > 0:
        return add_stock(snapshot, delta, movement_type="adjustment")
    return remove_stock(snapshot, -delta, movement_type="adjustment")


def write_off_stock(snapshot: StockSnapshot, qty: int, write_off_type: str) -> StockChange:
    if write_off_type not in WRITE_OFF_TYPES:
        raise ValidationError(f"write_off_type must be one of: {', '.join(sorted(WRITE_OFF_TYPES))}")
    return remove_stock(snapshot, qty, movement_type=write_off_type)


def return_stock(snapshot: StockSnapshot, qty: int) -> StockChange:
    return add_stock(snapshot, qty, movement_type="return")


def reserve_stock(snapshot: StockSnapshot, qty: int) -> StockChange:
    _require_qty(qty)
    _require_active(snapshot)
    if qty > snapshot.available:
        raise InsufficientStock(requested=qty, available=snapshot.available)
    return _change(snapshot, 0, qty, None)


def release_reservation(snapshot: StockSnapshot, qty: int) -> StockChange:
    _require_qty(qty)
    if qty > snapshot.reserved:
        raise ValidationError(f"Cannot release {qty}; only {snapshot.reserved} reserved")
    return _change(snapshot, 0, -qty, None)


def fulfill_reservation(snapshot: StockSnapshot, qty: int) -> StockChange:
    """Consume reserved units: both current and reserved drop by qty."""
    _require_qty(qty)
    _require_active(snapshot)
    if qty > snapshot.reserved:
        raise ValidationError(f"Cannot fulfil {qty}; only {snapshot.reserved} reserved")
    return _change(snapshot, -qty, -qty, "outward")
