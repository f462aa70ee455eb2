"""
Purchase order state machine tests.

Verifies:
- Totals are computed in integer cents on create/edit
- The full forward path DRAFT -> COMPLETED with history replay
- Error ordering: InvalidTransition, Forbidden, MissingRequiredField
- Failed transitions never mutate the order or its history
- Receiving enforces ordered quantities; receive closes every line
- Invoice receivings never exceed the outstanding backlog
"""

import pytest
from sqlalchemy import update

from medisupply.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    MissingRequiredField,
    NotReady,
    ValidationError,
)
from medisupply.models import (
    AuditEvent,
    PurchaseOrder,
    SecurityEvent,
    WorkflowHistoryEntry,
    WorkflowTransition,
)
from medisupply.services import invoice_receiving_service, purchase_order_service, workflow_service


def _history_actions(po_id):
    return [e.action for e in purchase_order_service.get_history(po_id)]


# =============================================================================
# CREATE / EDIT
# =============================================================================


class TestCreateAndEdit:

    def test_create_starts_in_draft_with_totals(self, make_po, masters):
        po = make_po([
            {"product_id": masters["product"].id, "quantity": 10, "foc_quantity": 2,
             "unit_price_cents": 1250, "discount_type": "percentage", "discount_value": 10,
             "gst_percentage": 12},
            {"product_id": masters["product_b"].id, "quantity": 3,
             "unit_price_cents": 999, "discount_value": 100},
        ])

        assert po.status == "draft"
        assert po.current_stage.code == "DRAFT"
        assert po.po_number.startswith("PO-")
        # line 1: 8 billable * 1250 = 10000; 10% off = 1000; 12% of 9000 = 1080
        # line 2: 3 * 999 = 2997; 100 off; no tax
        assert po.sub_total_cents == 10000 + 2997
        assert po.discount_total_cents == 1000 + 100
        assert po.tax_total_cents == 1080
        assert po.grand_total_cents == 9000 + 1080 + 2897
        assert [line.total_amount_cents for line in po.lines] == [10080, 2897]
        assert _history_actions(po.id) == ["create"]

    def test_create_rejects_foc_above_quantity(self, make_po, masters):
        with pytest.raises(ValidationError):
            make_po([{"product_id": masters["product"].id, "quantity": 2, "foc_quantity": 3,
                      "unit_price_cents": 100}])

    def test_edit_only_in_draft(self, make_po, users, masters, db_session):
        po = make_po()
        officer = users["procurement_officer"]
        purchase_order_service.update_purchase_order(
            po.id, actor=officer,
            lines=[{"product_id": masters["product"].id, "quantity": 4, "unit_price_cents": 500}],
        )
        db_session.commit()
        assert po.grand_total_cents == 2000

        purchase_order_service.transition(po.id, "submit", {}, officer)
        db_session.commit()
        with pytest.raises(InvalidTransition):
            purchase_order_service.update_purchase_order(po.id, actor=officer, notes="late change")

    def test_delete_only_in_initial_stage(self, make_po, users, db_session):
        officer = users["procurement_officer"]
        draft = make_po()
        purchase_order_service.delete_purchase_order(draft.id, actor=officer)
        db_session.commit()
        assert db_session.query(WorkflowHistoryEntry).filter_by(purchase_order_id=draft.id).count() == 0

        submitted = make_po()
        purchase_order_service.transition(submitted.id, "submit", {}, officer)
        db_session.commit()
        with pytest.raises(NotReady):
            purchase_order_service.delete_purchase_order(submitted.id, actor=officer)


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestForwardPath:

    def test_full_lifecycle_and_replay(self, ordered_po, users, db_session):
        po = ordered_po()
        assert po.status == "ordered"
        assert po.approved_by_user_id == users["approver_l2"].id

        line = po.lines[0]
        manager = users["warehouse_manager"]
        purchase_order_service.transition(
            po.id, "receive_partial", {"products": [{"line_id": line.id, "received_qty": 4}]}, manager,
        )
        purchase_order_service.transition(
            po.id, "receive", {"products": [{"product_id": line.product_id, "received_qty": 6}]}, manager,
        )
        db_session.commit()
        assert line.received_qty == 10
        assert po.status == "received"

        purchase_order_service.transition(po.id, "qc_check", {}, users["qc_manager"])
        purchase_order_service.transition(po.id, "approve", {"qc_results": "all passed"}, users["qc_manager"])
        purchase_order_service.transition(po.id, "complete", {}, users["procurement_officer"])
        db_session.commit()

        assert po.current_stage.code == "COMPLETED"
        assert po.status == po.current_stage.code.lower()
        assert _history_actions(po.id) == [
            "create", "submit", "approve", "approve", "send",
            "receive_partial", "receive", "qc_check", "approve", "complete",
        ]

        replay = purchase_order_service.replay_history(po.id)
        assert replay["consistent"] is True
        assert replay["replayed_stage"] == "COMPLETED"

    def test_return_moves_backwards_and_replays(self, make_po, users, db_session):
        po = make_po()
        purchase_order_service.transition(po.id, "submit", {}, users["procurement_officer"])
        purchase_order_service.transition(po.id, "approve", {}, users["approver_l1"])
        purchase_order_service.transition(
            po.id, "return", {"remarks": "price check"}, users["approver_l2"],
        )
        db_session.commit()

        assert po.current_stage.code == "PENDING_APPROVAL_L1"
        last = purchase_order_service.get_history(po.id)[-1]
        assert last.remarks == "price check"
        assert purchase_order_service.replay_history(po.id)["consistent"] is True

    def test_transition_emits_audit_event(self, make_po, users, db_session):
        po = make_po()
        purchase_order_service.transition(po.id, "submit", {}, users["procurement_officer"])
        db_session.commit()

        event = db_session.query(AuditEvent).filter_by(
            resource="purchase_order", resource_id=po.id, action="submit",
        ).one()
        assert '"draft"' in event.before
        assert '"pending_approval_l1"' in event.after

    def test_replay_detects_tampering(self, make_po, users, db_session):
        po = make_po()
        purchase_order_service.transition(po.id, "submit", {}, users["procurement_officer"])
        db_session.commit()

        entry = purchase_order_service.get_history(po.id)[-1]
        entry.action = "approve"
        db_session.commit()

        replay = purchase_order_service.replay_history(po.id)
        assert replay["consistent"] is False
        assert replay["problems"]


# =============================================================================
# FAILURES
# =============================================================================


class TestTransitionFailures:

    def test_unlisted_action_is_invalid_transition(self, make_po, users, db_session):
        po = make_po()
        with pytest.raises(InvalidTransition):
            purchase_order_service.transition(po.id, "send", {}, users["admin"])
        db_session.rollback()

        assert po.status == "draft"
        assert _history_actions(po.id) == ["create"]

    def test_unlisted_action_wins_over_permission(self, make_po, users):
        po = make_po()
        with pytest.raises(InvalidTransition):
            purchase_order_service.transition(po.id, "approve", {}, users["viewer"])

    def test_missing_stage_permission_is_forbidden_and_logged(self, make_po, users, db_session):
        po = make_po()
        approver = users["approver_l1"]

        with pytest.raises(Forbidden) as exc:
            purchase_order_service.transition(po.id, "submit", {}, approver)
        db_session.rollback()

        assert exc.value.details["missing_permissions"] == ["PO_EDIT"]
        event = db_session.query(SecurityEvent).filter_by(
            user_id=approver.id, event_type="STAGE_ACTION_DENIED",
        ).one()
        assert event.success is False
        assert po.status == "draft"

    def test_deactivated_transition_is_invalid(self, make_po, users, db_session):
        po = make_po()
        draft = workflow_service.get_stage_by_code("DRAFT")
        row = db_session.query(WorkflowTransition).filter_by(from_stage_id=draft.id, action="submit").one()
        row.is_active = False
        db_session.commit()

        with pytest.raises(InvalidTransition) as exc:
            purchase_order_service.transition(po.id, "submit", {}, users["procurement_officer"])
        assert "No transition defined" in exc.value.message

    def test_missing_required_field_names_it(self, make_po, users, db_session):
        po = make_po()
        with pytest.raises(MissingRequiredField) as exc:
            purchase_order_service.transition(po.id, "cancel", {"remarks": "   "}, users["procurement_officer"])
        db_session.rollback()

        assert exc.value.field == "remarks"
        assert po.status == "draft"

        purchase_order_service.transition(
            po.id, "cancel", {"remarks": "duplicate order"}, users["procurement_officer"],
        )
        db_session.commit()
        assert po.current_stage.code == "CANCELLED"
        assert po.current_stage.is_terminal

    def test_over_receiving_is_rejected(self, ordered_po, users, db_session):
        po = ordered_po()
        line = po.lines[0]
        with pytest.raises(ValidationError):
            purchase_order_service.transition(
                po.id, "receive", {"products": [{"line_id": line.id, "received_qty": 11}]},
                users["warehouse_manager"],
            )
        db_session.rollback()
        assert line.received_qty == 0
        assert po.status == "ordered"

    def test_receive_with_short_lines_is_not_ready(self, ordered_po, users, db_session):
        po = ordered_po()
        line = po.lines[0]
        with pytest.raises(NotReady) as exc:
            purchase_order_service.transition(
                po.id, "receive", {"products": [{"line_id": line.id, "received_qty": 3}]},
                users["warehouse_manager"],
            )
        db_session.rollback()
        assert exc.value.details["short_lines"] == [line.line_number]
        assert line.received_qty == 0
        assert po.status == "ordered"

    def test_partial_receipt_that_completes_every_line_is_not_ready(self, ordered_po, users, db_session):
        po = ordered_po()
        line = po.lines[0]
        with pytest.raises(NotReady):
            purchase_order_service.transition(
                po.id, "receive_partial", {"products": [{"line_id": line.id, "received_qty": 10}]},
                users["warehouse_manager"],
            )
        db_session.rollback()
        assert po.status == "ordered"

    def test_invoice_is_bounded_by_outstanding_quantity(self, ordered_po, users, masters, db_session):
        po = ordered_po()
        manager = users["warehouse_manager"]

        def _invoice(number, qty):
            return invoice_receiving_service.create_invoice_receiving(
                purchase_order_id=po.id,
                invoice_number=number,
                lines=[{"product_id": masters["product"].id, "received_qty": qty, "batch_number": "B-9"}],
                actor=manager,
            )

        with pytest.raises(ValidationError):
            _invoice("INV-OVER", 11)
        db_session.rollback()

        _invoice("INV-1", 6)
        db_session.commit()
        assert invoice_receiving_service.outstanding_quantities(po) == {masters["product"].id: 4}

        with pytest.raises(ValidationError) as exc:
            _invoice("INV-2", 5)
        db_session.rollback()
        assert exc.value.details["outstanding"] == 4

        _invoice("INV-3", 4)
        db_session.commit()
        assert invoice_receiving_service.outstanding_quantities(po) == {masters["product"].id: 0}

    def test_lost_race_is_conflict(self, make_po, users, db_session):
        po = make_po()
        officer = users["procurement_officer"]
        assert po.current_stage.code == "DRAFT"

        # Another writer moves the row underneath the loaded (now stale) object
        l1 = workflow_service.get_stage_by_code("PENDING_APPROVAL_L1")
        db_session.execute(
            update(PurchaseOrder)
            .where(PurchaseOrder.id == po.id)
            .values(current_stage_id=l1.id, status="pending_approval_l1")
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(Conflict):
            purchase_order_service.transition(po.id, "submit", {}, officer)
        db_session.rollback()
