"""
Pure stock rule tests (no database).

Verifies:
- available = current - reserved never goes negative
- remove / write-off never consume reserved units
- Inactive snapshots reject every increase or decrease
"""

import pytest

from medisupply.domain import stock
from medisupply.domain.stock import StockSnapshot
from medisupply.errors import InsufficientStock, NotReady, ValidationError


class TestQuantityRules:

    def test_add_and_remove(self):
        change = stock.add_stock(StockSnapshot(current=5), 3)
        assert change.after.current == 8
        assert (change.quantity_delta, change.reserved_delta) == (3, 0)
        assert change.movement_type == "inward"

        change = stock.remove_stock(change.after, 8)
        assert change.after.current == 0
        assert change.movement_type == "outward"

    def test_remove_cannot_touch_reserved_units(self):
        snapshot = StockSnapshot(current=10, reserved=7)
        with pytest.raises(InsufficientStock) as exc:
            stock.remove_stock(snapshot, 4)
        assert (exc.value.requested, exc.value.available) == (4, 3)

    @pytest.mark.parametrize("qty", [0, -1, True, 2.5, "3"])
    def test_quantity_must_be_positive_integer(self, qty):
        with pytest.raises(ValidationError):
            stock.add_stock(StockSnapshot(current=1), qty)

    def test_adjust_is_signed(self):
        up = stock.adjust_stock(StockSnapshot(current=2), 5)
        assert up.after.current == 7 and up.movement_type == "adjustment"

        down = stock.adjust_stock(StockSnapshot(current=7, reserved=2), -5)
        assert down.after.current == 2 and down.movement_type == "adjustment"

        with pytest.raises(InsufficientStock):
            stock.adjust_stock(StockSnapshot(current=7, reserved=2), -6)
        with pytest.raises(ValidationError):
            stock.adjust_stock(StockSnapshot(current=7), 0)

    def test_write_off_types(self):
        change = stock.write_off_stock(StockSnapshot(current=4), 1, "expired")
        assert change.movement_type == "expired"
        with pytest.raises(ValidationError):
            stock.write_off_stock(StockSnapshot(current=4), 1, "stolen")

    def test_inactive_record_rejects_changes(self):
        inactive = StockSnapshot(current=10, is_active=False)
        with pytest.raises(NotReady):
            stock.add_stock(inactive, 1)
        with pytest.raises(NotReady):
            stock.remove_stock(inactive, 1)
        with pytest.raises(NotReady):
            stock.reserve_stock(inactive, 1)


class TestReservationRules:

    def test_reserve_release_fulfill(self):
        reserved = stock.reserve_stock(StockSnapshot(current=10), 6)
        assert reserved.after.reserved == 6
        assert reserved.after.available == 4
        assert reserved.movement_type is None

        released = stock.release_reservation(reserved.after, 2)
        assert released.after.reserved == 4

        fulfilled = stock.fulfill_reservation(released.after, 4)
        assert (fulfilled.after.current, fulfilled.after.reserved) == (6, 0)
        assert fulfilled.movement_type == "outward"

    def test_reserve_beyond_available(self):
        with pytest.raises(InsufficientStock):
            stock.reserve_stock(StockSnapshot(current=10, reserved=6), 5)

    def test_release_beyond_reserved(self):
        with pytest.raises(ValidationError):
            stock.release_reservation(StockSnapshot(current=10, reserved=1), 2)
        with pytest.raises(ValidationError):
            stock.fulfill_reservation(StockSnapshot(current=10, reserved=1), 2)
