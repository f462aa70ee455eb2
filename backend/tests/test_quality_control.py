"""
Quality control ledger tests.

Verifies:
- Records open pending with one pending item per unit (or sub-batch)
- Product results follow the all-pass / all-fail / mixed rule
- Submit needs every product resolved; approve/reject only from submitted
- Only the assigned inspector (or a QC approver) records results
- Bulk assignment moves open records only; workload counts per assignee
"""

import pytest

from medisupply.domain.quality import (
    item_quantities,
    normalize_qc_type,
    overall_result,
    product_result,
    reason_summary,
)
from medisupply.errors import Conflict, Forbidden, NotReady, ValidationError
from medisupply.services import quality_control_service

from conftest import inspect_all


@pytest.fixture
def two_product_invoice(received_invoice, masters):
    return received_invoice([
        {"product_id": masters["product"].id, "quantity": 3, "unit_price_cents": 500},
        {"product_id": masters["product_b"].id, "quantity": 2, "unit_price_cents": 250},
    ])


@pytest.fixture
def open_qc(two_product_invoice, users, db_session):
    inspector = users["qc_inspector"]
    qc = quality_control_service.create_qc(
        invoice_receiving_id=two_product_invoice.id,
        actor=inspector,
        assigned_to_user_id=inspector.id,
        qc_type="incoming_inspection",
        environment={"temperature_c": 21.5, "humidity_pct": 45, "light_condition": "normal"},
    )
    db_session.commit()
    return qc


# =============================================================================
# PURE RULES
# =============================================================================


class TestResultRules:

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            (["passed", "passed"], "passed"),
            (["failed", "failed"], "failed"),
            (["passed", "failed"], "partial_pass"),
            (["passed", "pending"], "pending"),
            ([], "pending"),
        ],
    )
    def test_product_result(self, statuses, expected):
        assert product_result(statuses) == expected

    def test_overall_result_over_products(self):
        assert overall_result(["passed", "failed"]) == "partial_pass"
        assert overall_result(["passed", "passed"]) == "passed"

    def test_item_quantities_group_large_receipts(self):
        assert item_quantities(3, 50) == [1, 1, 1]
        split = item_quantities(103, 50)
        assert len(split) == 50
        assert sum(split) == 103
        assert max(split) - min(split) <= 1

    def test_reason_summary_counts_units(self):
        summary = reason_summary([
            ("passed", 2, []),
            ("failed", 3, ["damaged_packaging", "expired"]),
            ("pending", 1, []),
        ])
        assert summary == {"received_correctly": 2, "damaged_packaging": 3, "expired": 3}

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("urgent", "urgent"),
            ("incoming_inspection", "standard"),
            ("full_inspection", "special"),
            ("stability_testing", "stability_testing"),
        ],
    )
    def test_qc_type_normalization(self, raw, expected):
        assert normalize_qc_type(raw) == expected


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestQualityControlLifecycle:

    def test_create_initializes_pending_items(self, open_qc):
        assert open_qc.status == "pending"
        assert open_qc.qc_number.startswith("QC-")
        assert open_qc.qc_type == "standard"
        assert [len(p.items) for p in open_qc.products] == [3, 2]
        assert all(i.status == "pending" for p in open_qc.products for i in p.items)

    def test_one_record_per_invoice(self, open_qc, users):
        with pytest.raises(Conflict):
            quality_control_service.create_qc(
                invoice_receiving_id=open_qc.invoice_receiving_id, actor=users["qc_inspector"],
            )

    def test_first_update_moves_to_in_progress(self, open_qc, users, db_session):
        product = open_qc.products[0]
        quality_control_service.update_item_result(
            open_qc.id, qc_product_id=product.id, item_id=product.items[0].id,
            status="passed", actor=users["qc_inspector"],
        )
        db_session.commit()
        assert open_qc.status == "in_progress"
        assert product.qc_result == "pending"

    def test_mixed_products_can_be_submitted(self, open_qc, users, masters, db_session):
        inspector = users["qc_inspector"]
        inspect_all(open_qc, inspector, "passed", product_ids={masters["product"].id})
        inspect_all(open_qc, inspector, "failed", product_ids={masters["product_b"].id})

        results = {p.product_id: p.qc_result for p in open_qc.products}
        assert results == {masters["product"].id: "passed", masters["product_b"].id: "failed"}

        quality_control_service.submit_qc(open_qc.id, actor=inspector, remarks="done")
        db_session.commit()
        assert open_qc.status == "submitted"
        assert open_qc.overall_result == "partial_pass"

        failed = next(p for p in open_qc.products if p.product_id == masters["product_b"].id)
        assert failed.failed_qty == 2
        assert failed.qc_summary == {"damaged_product": 2}

    def test_partial_product(self, open_qc, users, db_session):
        product = open_qc.products[0]
        inspector = users["qc_inspector"]
        for item, status in zip(product.items, ["passed", "passed", "expired"]):
            quality_control_service.update_item_result(
                open_qc.id, qc_product_id=product.id, item_id=item.id, status=status, actor=inspector,
            )
        db_session.commit()

        assert product.qc_result == "partial_pass"
        assert (product.passed_qty, product.failed_qty) == (2, 1)
        assert product.items[2].status == "failed"
        assert product.items[2].reasons == ["expired"]

    def test_submit_with_pending_products_is_not_ready(self, open_qc, users, masters):
        inspect_all(open_qc, users["qc_inspector"], "passed", product_ids={masters["product"].id})
        with pytest.raises(NotReady) as exc:
            quality_control_service.submit_qc(open_qc.id, actor=users["qc_inspector"])
        assert exc.value.details["pending_products"] == [masters["product_b"].id]

    def test_approve_requires_submitted(self, open_qc, users):
        with pytest.raises(NotReady):
            quality_control_service.approve_qc(open_qc.id, actor=users["qc_manager"])

    def test_reject_requires_reason_and_locks(self, open_qc, users, db_session):
        inspect_all(open_qc, users["qc_inspector"], "failed")
        quality_control_service.submit_qc(open_qc.id, actor=users["qc_inspector"])

        with pytest.raises(ValidationError):
            quality_control_service.reject_qc(open_qc.id, actor=users["qc_manager"], reason=" ")

        quality_control_service.reject_qc(open_qc.id, actor=users["qc_manager"], reason="cold chain broken")
        db_session.commit()
        assert open_qc.status == "rejected"
        assert open_qc.rejected_at is not None
        assert open_qc.approved_at is None

        product = open_qc.products[0]
        with pytest.raises(NotReady):
            quality_control_service.update_item_result(
                open_qc.id, qc_product_id=product.id, item_id=product.items[0].id,
                status="passed", actor=users["qc_manager"],
            )

    def test_only_assigned_inspector_records_results(self, open_qc, users, seed, db_session):
        from medisupply.services.auth_service import assign_role, create_user

        other = create_user("inspector2", "inspector2@medisupply.test", "Password123!", bcrypt_rounds=4)
        assign_role(other.id, "qc_inspector")
        product = open_qc.products[0]

        with pytest.raises(Forbidden):
            quality_control_service.update_item_result(
                open_qc.id, qc_product_id=product.id, item_id=product.items[0].id,
                status="passed", actor=other,
            )

        # A QC approver may correct any inspection
        quality_control_service.update_item_result(
            open_qc.id, qc_product_id=product.id, item_id=product.items[0].id,
            status="passed", actor=users["qc_manager"],
        )

    def test_unknown_status_or_reason_is_rejected(self, open_qc, users):
        product = open_qc.products[0]
        item = product.items[0]
        with pytest.raises(ValidationError):
            quality_control_service.update_item_result(
                open_qc.id, qc_product_id=product.id, item_id=item.id,
                status="fine", actor=users["qc_inspector"],
            )
        with pytest.raises(ValidationError):
            quality_control_service.update_item_result(
                open_qc.id, qc_product_id=product.id, item_id=item.id,
                status="failed", reasons=["smells_funny"], actor=users["qc_inspector"],
            )

    def test_statistics(self, open_qc):
        stats = quality_control_service.qc_statistics()
        assert stats["total"] == 1
        assert stats["by_status"] == {"pending": 1}

    def test_stale_record_is_conflict(self, open_qc, users, db_session):
        from sqlalchemy import update

        from medisupply.models import QualityControl

        stale_version = open_qc.version_id
        db_session.execute(
            update(QualityControl)
            .where(QualityControl.id == open_qc.id)
            .values(version_id=stale_version + 1)
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(Conflict):
            quality_control_service.assign_qc(
                open_qc.id, assigned_to_user_id=users["qc_manager"].id, actor=users["qc_manager"],
            )

    def test_bulk_assign_and_workload(self, open_qc, users, db_session):
        manager = users["qc_manager"]
        inspector = users["qc_inspector"]
        assert quality_control_service.qc_workload() == [{
            "user_id": inspector.id, "username": inspector.username, "total": 1,
            "pending": 1, "in_progress": 0, "high_priority": 0, "urgent": 0,
        }]

        result = quality_control_service.bulk_assign_qcs(
            [open_qc.id, 9999], assigned_to_user_id=manager.id, actor=manager, priority="urgent",
        )
        db_session.commit()
        assert result == {"assigned": [open_qc.id], "skipped": [9999]}
        assert (open_qc.assigned_to_user_id, open_qc.priority) == (manager.id, "urgent")

        workload = quality_control_service.qc_workload()
        assert [(w["user_id"], w["urgent"]) for w in workload] == [(manager.id, 1)]

        with pytest.raises(ValidationError):
            quality_control_service.bulk_assign_qcs(
                [open_qc.id], assigned_to_user_id=manager.id, actor=manager, priority="whenever",
            )

    def test_bulk_assign_skips_closed_records(self, open_qc, users, db_session):
        inspect_all(open_qc, users["qc_inspector"], "failed")
        quality_control_service.submit_qc(open_qc.id, actor=users["qc_inspector"])
        quality_control_service.reject_qc(open_qc.id, actor=users["qc_manager"], reason="leaking")
        db_session.commit()

        result = quality_control_service.bulk_assign_qcs(
            [open_qc.id], assigned_to_user_id=users["qc_manager"].id, actor=users["qc_manager"],
        )
        assert result == {"assigned": [], "skipped": [open_qc.id]}
        assert quality_control_service.qc_workload() == []
        assert quality_control_service.qc_workload(active_only=False)[0]["total"] == 1
