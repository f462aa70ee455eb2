"""
Warehouse approval tests.

Verifies:
- Creation gate: QC must be approved with at least one passed product
- approved + rejected never exceeds the QC-passed quantity
- Approval posts inventory with full traceability
- A failed posting keeps the approval, reports PartialSuccess and can be
  reconciled idempotently
- Open records can be reassigned singly or in bulk; workload and statistics
  reflect them
"""

import pytest

from medisupply.errors import Conflict, NotFound, NotReady, PartialSuccess, ValidationError
from medisupply.models import Inventory, StockMovement, WarehouseApproval
from medisupply.services import inventory_service, quality_control_service, warehouse_approval_service

from conftest import inspect_all


@pytest.fixture
def open_wa(approved_qc, users, masters, db_session):
    qc = approved_qc()
    wa = warehouse_approval_service.create_warehouse_approval(
        quality_control_id=qc.id,
        warehouse_id=masters["w1"].id,
        actor=users["warehouse_manager"],
    )
    db_session.commit()
    return wa


# =============================================================================
# CREATION GATE
# =============================================================================


class TestCreationGate:

    def test_lines_mirror_passed_products(self, open_wa):
        assert open_wa.status == "pending"
        assert open_wa.wa_number.startswith("WA-")
        assert len(open_wa.products) == 1
        line = open_wa.products[0]
        assert (line.received_qty, line.qc_passed_qty, line.batch_number) == (10, 10, "B-001")

    def test_qc_not_approved_is_not_ready(self, received_invoice, users, masters):
        invoice = received_invoice()
        qc = quality_control_service.create_qc(invoice_receiving_id=invoice.id, actor=users["qc_inspector"])
        with pytest.raises(NotReady):
            warehouse_approval_service.create_warehouse_approval(
                quality_control_id=qc.id, warehouse_id=masters["w1"].id, actor=users["warehouse_manager"],
            )

    def test_qc_without_passed_products_is_not_ready(self, received_invoice, users, masters, db_session):
        invoice = received_invoice()
        inspector = users["qc_inspector"]
        qc = quality_control_service.create_qc(invoice_receiving_id=invoice.id, actor=inspector)
        inspect_all(qc, inspector, "failed")
        quality_control_service.submit_qc(qc.id, actor=inspector)
        quality_control_service.approve_qc(qc.id, actor=users["qc_manager"])
        db_session.commit()

        with pytest.raises(NotReady):
            warehouse_approval_service.create_warehouse_approval(
                quality_control_id=qc.id, warehouse_id=masters["w1"].id, actor=users["warehouse_manager"],
            )

    def test_one_approval_per_qc(self, open_wa, users, masters):
        with pytest.raises(Conflict):
            warehouse_approval_service.create_warehouse_approval(
                quality_control_id=open_wa.quality_control_id,
                warehouse_id=masters["w1"].id,
                actor=users["warehouse_manager"],
            )


# =============================================================================
# LINE DECISIONS
# =============================================================================


class TestLineDecisions:

    def test_quantities_bounded_by_qc_passed(self, open_wa, users):
        line = open_wa.products[0]
        with pytest.raises(ValidationError):
            warehouse_approval_service.update_product_approval(
                open_wa.id, line.id, actor=users["warehouse_manager"],
                approved_qty=8, rejected_qty=3, rejection_reasons=["damaged"],
            )

    def test_rejection_needs_reasons(self, open_wa, users):
        line = open_wa.products[0]
        with pytest.raises(ValidationError):
            warehouse_approval_service.update_product_approval(
                open_wa.id, line.id, actor=users["warehouse_manager"], approved_qty=8, rejected_qty=2,
            )

    def test_partial_acceptance(self, open_wa, users, db_session):
        line = open_wa.products[0]
        warehouse_approval_service.update_product_approval(
            open_wa.id, line.id, actor=users["warehouse_manager"],
            approved_qty=8, rejected_qty=2, rejection_reasons=["crushed cartons"],
            location={"zone": "C", "rack": "R9"},
        )
        db_session.commit()
        assert line.status == "partial_approved"
        assert open_wa.status == "in_progress"
        assert open_wa.overall_result == "partial_approved"

    def test_submit_needs_location_for_accepted_units(self, open_wa, users):
        line = open_wa.products[0]
        manager = users["warehouse_manager"]
        warehouse_approval_service.update_product_approval(open_wa.id, line.id, actor=manager, approved_qty=10)
        with pytest.raises(NotReady):
            warehouse_approval_service.submit_warehouse_approval(open_wa.id, actor=manager)

    def test_submit_needs_decision_on_every_line(self, open_wa, users):
        with pytest.raises(NotReady):
            warehouse_approval_service.submit_warehouse_approval(open_wa.id, actor=users["warehouse_manager"])


# =============================================================================
# APPROVAL AND INVENTORY POSTING
# =============================================================================


class TestApproval:

    def test_approve_posts_inventory_with_traceability(self, submitted_wa, users, masters, db_session):
        wa = submitted_wa()
        warehouse_approval_service.approve_warehouse_approval(wa.id, actor=users["warehouse_manager"])

        assert wa.status == "approved"
        assert wa.inventory_integration_status == "completed"

        inventory = db_session.query(Inventory).filter_by(
            product_id=masters["product"].id, batch_no="B-001", warehouse_id=masters["w1"].id,
        ).one()
        assert inventory.current_stock == 10
        assert inventory.unit_cost_cents == 1000
        assert inventory.total_value_cents == 10000
        assert inventory.location_label == "A-R1-S1-B1"
        assert inventory.wa_number == wa.wa_number
        assert inventory.po_number == wa.purchase_order.po_number

        movement = inventory.movements.one()
        assert movement.movement_type == "inward"
        assert movement.idempotency_key == f"warehouse_approval:{wa.id}:{wa.products[0].id}"

        journey = inventory_service.product_journey(inventory.id)
        assert journey["quality_control"]["number"] == wa.quality_control.qc_number
        assert journey["warehouse_approval"]["status"] == "approved"

    def test_approve_requires_submitted(self, open_wa, users):
        with pytest.raises(NotReady):
            warehouse_approval_service.approve_warehouse_approval(open_wa.id, actor=users["warehouse_manager"])

    def test_reject_creates_no_inventory(self, submitted_wa, users, db_session):
        wa = submitted_wa()
        warehouse_approval_service.reject_warehouse_approval(
            wa.id, actor=users["warehouse_manager"], reason="wrong warehouse",
        )
        db_session.commit()
        assert wa.status == "rejected"
        assert db_session.query(Inventory).count() == 0

    def test_failed_posting_is_partial_success_and_reconcilable(self, submitted_wa, users, masters, db_session):
        clerk = users["inventory_clerk"]
        blocker = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="B-001", warehouse_id=masters["w1"].id, actor=clerk,
        )
        inventory_service.soft_delete(blocker.id, actor=clerk)
        db_session.commit()

        wa = submitted_wa()
        with pytest.raises(PartialSuccess) as exc:
            warehouse_approval_service.approve_warehouse_approval(wa.id, actor=users["warehouse_manager"])

        assert exc.value.resource["status"] == "approved"
        stored = db_session.get(WarehouseApproval, wa.id)
        assert stored.status == "approved"
        assert stored.inventory_integration_status == "failed"
        assert "deactivated" in stored.inventory_integration_error
        assert warehouse_approval_service.pending_integrations() == [stored]
        assert db_session.query(StockMovement).count() == 0

        inventory_service.restore(blocker.id, actor=clerk)
        db_session.commit()
        warehouse_approval_service.reconcile_inventory(wa.id, actor=users["warehouse_manager"])

        assert stored.inventory_integration_status == "completed"
        assert db_session.get(Inventory, blocker.id).current_stock == 10

        # Replaying a completed posting never double-counts
        stored.inventory_integration_status = "failed"
        db_session.commit()
        warehouse_approval_service.reconcile_inventory(wa.id, actor=users["warehouse_manager"])
        assert db_session.get(Inventory, blocker.id).current_stock == 10
        assert db_session.query(StockMovement).count() == 1


# =============================================================================
# ASSIGNMENT AND REPORTS
# =============================================================================


class TestAssignmentAndReports:

    def test_reassign_only_while_open(self, open_wa, users, db_session):
        manager = users["warehouse_manager"]
        warehouse_approval_service.assign_warehouse_approval(
            open_wa.id, assigned_to_user_id=manager.id, actor=manager,
        )
        db_session.commit()
        assert open_wa.assigned_to_user_id == manager.id

        with pytest.raises(NotFound):
            warehouse_approval_service.assign_warehouse_approval(
                open_wa.id, assigned_to_user_id=9999, actor=manager,
            )

        line = open_wa.products[0]
        warehouse_approval_service.update_product_approval(
            open_wa.id, line.id, actor=manager, approved_qty=line.qc_passed_qty,
            location={"zone": "A", "rack": "R1"},
        )
        warehouse_approval_service.submit_warehouse_approval(open_wa.id, actor=manager)
        db_session.commit()

        with pytest.raises(NotReady):
            warehouse_approval_service.assign_warehouse_approval(
                open_wa.id, assigned_to_user_id=users["admin"].id, actor=manager,
            )

    def test_bulk_assign_and_workload(self, open_wa, users, db_session):
        manager = users["warehouse_manager"]
        assert warehouse_approval_service.warehouse_approval_workload() == [
            {"user_id": None, "username": None, "total": 1, "pending": 1, "in_progress": 0},
        ]

        result = warehouse_approval_service.bulk_assign_warehouse_approvals(
            [open_wa.id, str(open_wa.id), 9999], assigned_to_user_id=manager.id, actor=manager,
        )
        db_session.commit()
        assert result == {"assigned": [open_wa.id], "skipped": [9999]}
        assert open_wa.assigned_to_user_id == manager.id

        workload = warehouse_approval_service.warehouse_approval_workload()
        assert [(w["user_id"], w["username"], w["total"]) for w in workload] == [
            (manager.id, manager.username, 1),
        ]

        with pytest.raises(ValidationError):
            warehouse_approval_service.bulk_assign_warehouse_approvals(
                [], assigned_to_user_id=manager.id, actor=manager,
            )

    def test_statistics_and_dashboard(self, submitted_wa, users):
        wa = submitted_wa()
        warehouse_approval_service.approve_warehouse_approval(wa.id, actor=users["warehouse_manager"])

        stats = warehouse_approval_service.warehouse_approval_statistics()
        assert stats["total"] == 1
        assert stats["by_status"] == {"approved": 1}
        assert stats["by_overall_result"] == {"approved": 1}
        assert stats["by_integration_status"] == {"completed": 1}
        assert stats["products_by_status"] == {"approved": 1}
        assert stats["approval_hours"]["minimum"] >= 0

        dashboard = warehouse_approval_service.warehouse_approval_dashboard()
        assert dashboard["statistics"]["total"] == 1
        assert [r["id"] for r in dashboard["recent"]] == [wa.id]
        assert dashboard["pending_integrations"] == 0
        assert dashboard["workload"] == []
