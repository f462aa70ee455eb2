"""
Inventory ledger tests.

Verifies:
- available_stock = current_stock - reserved_stock >= 0 after every operation
- Failed operations leave quantities untouched
- Every quantity change appends a movement; transfers share a transfer_ref
- Reservations: active -> cancelled | fulfilled, including expiry
- Soft delete is blocked while units are reserved
- A change computed from a stale snapshot is refused at write time
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import update

from medisupply.domain import stock
from medisupply.errors import Conflict, InsufficientStock, NotReady, ValidationError
from medisupply.models import Inventory, StockMovement, StockReservation
from medisupply.repositories import inventory_repository
from medisupply.services import inventory_service
from medisupply.time_utils import utcnow


@pytest.fixture
def clerk(users):
    return users["inventory_clerk"]


@pytest.fixture
def stocked(db_session, masters, clerk):
    """100 units of AMOX500 batch LOT-1 in W1 at 250 cents, 10 of them reserved."""
    inventory = inventory_service.create_inventory(
        product_id=masters["product"].id,
        batch_no="LOT-1",
        warehouse_id=masters["w1"].id,
        actor=clerk,
        quantity=100,
        unit_cost_cents=250,
        location={"zone": "A", "rack": "R2"},
        expiry_date=date(2027, 6, 30),
        reorder_level=20,
    )
    inventory_service.reserve_stock(inventory.id, quantity=10, reserved_for="Ward 7", actor=clerk)
    db_session.commit()
    return inventory


def _levels(inventory):
    return inventory.current_stock, inventory.reserved_stock, inventory.available_stock


# =============================================================================
# RECORDS
# =============================================================================


class TestRecords:

    def test_opening_balance(self, stocked):
        assert _levels(stocked) == (100, 10, 90)
        assert stocked.total_value_cents == 25000
        assert stocked.location_label == "A-R2"
        opening = stocked.movements.one()
        assert (opening.movement_type, opening.quantity_delta, opening.balance_after) == ("inward", 100, 100)

    def test_one_record_per_product_batch_warehouse(self, stocked, masters, clerk):
        with pytest.raises(Conflict):
            inventory_service.create_inventory(
                product_id=masters["product"].id, batch_no="LOT-1",
                warehouse_id=masters["w1"].id, actor=clerk,
            )

    def test_settings_never_change_quantities(self, stocked, clerk):
        with pytest.raises(ValidationError):
            inventory_service.update_settings(stocked.id, actor=clerk, changes={"current_stock": 5})
        with pytest.raises(ValidationError):
            inventory_service.update_settings(
                stocked.id, actor=clerk, changes={"minimum_stock": 50, "maximum_stock": 10},
            )
        assert (stocked.minimum_stock, stocked.maximum_stock) == (0, None)

        inventory_service.update_settings(
            stocked.id, actor=clerk, changes={"stock_status": "quarantine", "location": {"shelf": "S3"}},
        )
        assert stocked.stock_status == "quarantine"
        assert stocked.location_label == "A-R2-S3"
        assert stocked.current_stock == 100

    def test_threshold_check_uses_stored_values(self, stocked, clerk, db_session):
        inventory_service.update_settings(stocked.id, actor=clerk, changes={"maximum_stock": 50})
        db_session.commit()

        with pytest.raises(ValidationError):
            inventory_service.update_settings(stocked.id, actor=clerk, changes={"minimum_stock": 60})
        assert stocked.minimum_stock == 0

        inventory_service.update_settings(stocked.id, actor=clerk, changes={"minimum_stock": 40})
        db_session.commit()
        assert (stocked.minimum_stock, stocked.maximum_stock) == (40, 50)


# =============================================================================
# QUANTITY OPERATIONS
# =============================================================================


class TestQuantityOperations:

    def test_remove_beyond_available_is_rejected(self, stocked, clerk, db_session):
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.remove_stock(stocked.id, quantity=91, actor=clerk)
        db_session.rollback()
        assert exc.value.available == 90
        assert _levels(db_session.get(Inventory, stocked.id)) == (100, 10, 90)

    def test_remove_and_add(self, stocked, clerk, db_session):
        inventory_service.remove_stock(stocked.id, quantity=90, actor=clerk, reason="dispatch")
        inventory_service.add_stock(stocked.id, quantity=5, actor=clerk)
        db_session.commit()
        assert _levels(stocked) == (15, 10, 5)

    def test_adjustment_needs_reason(self, stocked, clerk, db_session):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(stocked.id, delta=-3, reason=" ", actor=clerk)

        movement = inventory_service.adjust_stock(stocked.id, delta=-3, reason="cycle count", actor=clerk)
        db_session.commit()
        assert movement.movement_type == "adjustment"
        assert movement.reason == "cycle count"
        assert stocked.current_stock == 97

    def test_write_off_and_return(self, stocked, clerk, db_session):
        movement = inventory_service.write_off_stock(
            stocked.id, quantity=4, write_off_type="damaged", actor=clerk, reason="dropped",
        )
        inventory_service.return_stock(stocked.id, quantity=1, actor=clerk)
        db_session.commit()
        assert movement.movement_type == "damaged"
        assert stocked.current_stock == 97

        types = [m.movement_type for m in inventory_service.list_movements(stocked.id)]
        assert types == ["return", "damaged", "inward"]

    def test_utilization_links_movement(self, stocked, clerk, db_session):
        record = inventory_service.record_utilization(
            stocked.id, quantity=5, hospital_ref="HOSP-001", actor=clerk,
            case_ref="CASE-9", doctor_ref="DR-2",
        )
        db_session.commit()
        assert stocked.current_stock == 95
        movement = db_session.get(StockMovement, record.stock_movement_id)
        assert movement.movement_type == "utilization"
        assert movement.quantity_delta == -5

        with pytest.raises(ValidationError):
            inventory_service.record_utilization(stocked.id, quantity=1, hospital_ref="", actor=clerk)

    def test_stale_snapshot_is_refused_at_write_time(self, stocked, db_session):
        stale = inventory_repository.snapshot_of(stocked)
        assert stale.available == 90

        # Another writer reserves 50 units behind this session's back
        db_session.execute(
            update(Inventory)
            .where(Inventory.id == stocked.id)
            .values(reserved_stock=60)
            .execution_options(synchronize_session=False)
        )
        change = stock.remove_stock(stale, 90)

        with pytest.raises(InsufficientStock) as exc:
            inventory_repository.apply_change(stocked, change, reason="dispatch")
        assert (exc.value.requested, exc.value.available) == (90, 40)
        assert _levels(stocked) == (100, 60, 40)
        assert stocked.movements.count() == 1

    def test_stale_snapshot_after_concurrent_removal(self, stocked, db_session):
        stale = inventory_repository.snapshot_of(stocked)
        db_session.execute(
            update(Inventory)
            .where(Inventory.id == stocked.id)
            .values(current_stock=Inventory.current_stock - 85)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(InsufficientStock):
            inventory_repository.apply_change(stocked, stock.adjust_stock(stale, -20), reason="count")
        assert _levels(stocked) == (15, 10, 5)
        assert db_session.query(StockMovement).filter_by(inventory_id=stocked.id).count() == 1


# =============================================================================
# RESERVATIONS
# =============================================================================


class TestReservations:

    def test_reserve_beyond_available_leaves_state_unchanged(self, stocked, clerk, db_session):
        with pytest.raises(InsufficientStock):
            inventory_service.reserve_stock(stocked.id, quantity=95, reserved_for="OT", actor=clerk)
        db_session.rollback()
        assert _levels(db_session.get(Inventory, stocked.id)) == (100, 10, 90)
        assert db_session.query(StockReservation).count() == 1

    def test_release_restores_availability(self, stocked, clerk, db_session):
        reservation = inventory_service.list_reservations(stocked.id, status="active")[0]
        inventory_service.release_reservation(stocked.id, reservation.id, actor=clerk, reason="cancelled case")
        db_session.commit()

        assert _levels(stocked) == (100, 0, 100)
        assert reservation.status == "cancelled"
        with pytest.raises(NotReady):
            inventory_service.release_reservation(stocked.id, reservation.id, actor=clerk)

    def test_fulfill_consumes_reserved_units(self, stocked, clerk, db_session):
        reservation = inventory_service.list_reservations(stocked.id)[0]
        movement = inventory_service.fulfill_reservation(stocked.id, reservation.id, actor=clerk)
        db_session.commit()

        assert _levels(stocked) == (90, 0, 90)
        assert reservation.status == "fulfilled"
        assert movement.reserved_delta == -10

    def test_expired_reservations_are_released(self, stocked, clerk, db_session):
        inventory_service.reserve_stock(
            stocked.id, quantity=5, reserved_for="Clinic", actor=clerk,
            expires_at=utcnow() + timedelta(hours=1),
        )
        db_session.commit()
        assert stocked.reserved_stock == 15

        assert inventory_service.expire_reservations(utcnow()) == 0
        assert inventory_service.expire_reservations(utcnow() + timedelta(hours=2)) == 1
        db_session.commit()
        assert stocked.reserved_stock == 10

    def test_expiry_must_be_in_future(self, stocked, clerk):
        with pytest.raises(ValidationError):
            inventory_service.reserve_stock(
                stocked.id, quantity=1, reserved_for="x", actor=clerk,
                expires_at=utcnow() - timedelta(minutes=5),
            )


# =============================================================================
# TRANSFERS
# =============================================================================


class TestTransfers:

    def test_cross_warehouse_transfer(self, stocked, masters, clerk, db_session):
        result = inventory_service.transfer_stock(
            stocked.id, quantity=25, actor=clerk,
            to_warehouse_id=masters["w2"].id, to_location={"zone": "B"},
        )
        db_session.commit()

        source, destination = result["source"], result["destination"]
        assert _levels(source) == (75, 10, 65)
        assert _levels(destination) == (25, 0, 25)
        assert destination.warehouse_id == masters["w2"].id
        assert destination.batch_no == "LOT-1"
        assert destination.unit_cost_cents == 250
        assert destination.source_inventory_id == source.id

        legs = db_session.query(StockMovement).filter_by(transfer_ref=result["transfer_ref"]).all()
        assert sorted(m.quantity_delta for m in legs) == [-25, 25]
        assert all(m.movement_type == "transfer" for m in legs)

        journey = inventory_service.product_journey(destination.id)
        assert journey["transferred_from"][0]["id"] == source.id

    def test_transfer_cannot_take_reserved_units(self, stocked, masters, clerk, db_session):
        with pytest.raises(InsufficientStock):
            inventory_service.transfer_stock(
                stocked.id, quantity=95, actor=clerk, to_warehouse_id=masters["w2"].id,
            )
        db_session.rollback()
        assert db_session.query(Inventory).count() == 1

    def test_relocation_within_warehouse(self, stocked, clerk, db_session):
        with pytest.raises(ValidationError):
            inventory_service.transfer_stock(stocked.id, quantity=10, actor=clerk, to_location={"zone": "C"})

        result = inventory_service.transfer_stock(
            stocked.id, quantity=100, actor=clerk, to_location={"zone": "C", "rack": "R1"},
        )
        db_session.commit()
        assert result["destination"] is stocked
        assert stocked.location_label == "C-R1"
        assert result["movements"][0].quantity_delta == 0


# =============================================================================
# SOFT DELETE, ALERTS, VALUATION
# =============================================================================


class TestLifecycleAndReports:

    def test_soft_delete_blocked_while_reserved(self, stocked, clerk, db_session):
        with pytest.raises(NotReady):
            inventory_service.soft_delete(stocked.id, actor=clerk)

        reservation = inventory_service.list_reservations(stocked.id)[0]
        inventory_service.release_reservation(stocked.id, reservation.id, actor=clerk)
        inventory_service.soft_delete(stocked.id, actor=clerk)
        db_session.commit()
        assert stocked.is_active is False

        with pytest.raises(NotReady):
            inventory_service.add_stock(stocked.id, quantity=1, actor=clerk)
        db_session.rollback()

        inventory_service.restore(stocked.id, actor=clerk)
        inventory_service.add_stock(stocked.id, quantity=1, actor=clerk)
        db_session.commit()
        assert stocked.current_stock == 101

    def test_alerts(self, stocked, masters, clerk, db_session):
        empty = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-9", warehouse_id=masters["w1"].id, actor=clerk,
        )
        db_session.commit()

        alerts = inventory_service.stock_alerts(as_of=date(2027, 6, 15))
        assert [a["id"] for a in alerts["out_of_stock"]] == [empty.id]
        assert [a["id"] for a in alerts["near_expiry"]] == [stocked.id]
        assert alerts["expired"] == []

        later = inventory_service.stock_alerts(as_of=date(2027, 7, 1))
        assert [a["id"] for a in later["expired"]] == [stocked.id]

    def test_reorder_flag_follows_minimum_stock(self, masters, clerk, db_session):
        record = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-5", warehouse_id=masters["w1"].id,
            actor=clerk, quantity=20, minimum_stock=10, reorder_level=30,
        )
        db_session.commit()
        assert record.needs_reorder is False
        alerts = inventory_service.stock_alerts()
        assert [a["id"] for a in alerts["low_stock"]] == [record.id]

        inventory_service.remove_stock(record.id, quantity=12, actor=clerk)
        db_session.commit()
        assert record.needs_reorder is True

    def test_valuation_ignores_inactive_records(self, stocked, masters, clerk, db_session):
        other = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-2", warehouse_id=masters["w2"].id,
            actor=clerk, quantity=4, unit_cost_cents=1000,
        )
        db_session.commit()
        summary = inventory_service.valuation_summary()
        assert summary["total_value_cents"] == 25000 + 4000
        assert summary["total_units"] == 104

        inventory_service.soft_delete(other.id, actor=clerk)
        db_session.commit()
        assert inventory_service.valuation_summary()["total_value_cents"] == 25000

    def test_statistics(self, stocked, masters, clerk, db_session):
        other = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-2", warehouse_id=masters["w1"].id,
            actor=clerk, quantity=4, unit_cost_cents=1000,
        )
        inventory_service.update_settings(other.id, actor=clerk, changes={"stock_status": "quarantine"})
        db_session.commit()

        stats = inventory_service.inventory_statistics(as_of=date(2027, 6, 15))
        assert (stats["records"], stats["total_units"], stats["total_value_cents"]) == (2, 104, 29000)
        assert stats["by_stock_status"]["quarantine"] == {"records": 1, "units": 4, "total_value_cents": 4000}
        assert stats["alerts"] == {"out_of_stock": 0, "low_stock": 0, "near_expiry": 1, "expired": 0}

    def test_bulk_settings_are_all_or_nothing(self, stocked, masters, clerk, db_session):
        other = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-2", warehouse_id=masters["w1"].id,
            actor=clerk, quantity=4, maximum_stock=30,
        )
        gone = inventory_service.create_inventory(
            product_id=masters["product_b"].id, batch_no="LOT-3", warehouse_id=masters["w2"].id, actor=clerk,
        )
        inventory_service.soft_delete(gone.id, actor=clerk)
        db_session.commit()

        # LOT-2 caps maximum_stock at 30, so the whole batch is refused
        with pytest.raises(ValidationError):
            inventory_service.bulk_update_settings(
                [stocked.id, other.id], actor=clerk, changes={"minimum_stock": 40},
            )
        db_session.rollback()
        assert stocked.minimum_stock == 0

        with pytest.raises(ValidationError):
            inventory_service.bulk_update_settings([stocked.id], actor=clerk, changes={"unit_cost_cents": 1})

        result = inventory_service.bulk_update_settings(
            [stocked.id, other.id, gone.id], actor=clerk,
            changes={"reorder_level": 15, "location": {"bin": "B7"}},
        )
        db_session.commit()
        assert result == {"updated": [stocked.id, other.id], "skipped": [gone.id]}
        assert (stocked.reorder_level, other.reorder_level, gone.reorder_level) == (15, 15, 0)
        assert stocked.location_label == "A-R2-B7"
