# Overview: Warehouse approval ledger; physical acceptance of QC-passed goods and inventory posting.

"""
Warehouse Approval Service

STATUS: pending -> in_progress -> submitted -> approved | rejected

GATE: created only from a QC record that is approved and has at least one
passed / partial_pass product; one approval per QC record. Lines are built
from those products only, with qc_passed_qty as the acceptance ceiling.

INVENTORY POSTING (the one cross-aggregate side effect):
approve() commits the approval first, then posts every line with
approved_qty > 0 inside a SAVEPOINT. If posting fails the savepoint rolls
back, inventory_integration_status becomes "failed" with the error, that
status is committed, and PartialSuccess is raised so the caller knows the
approval itself stands. reconcile_inventory() replays the posting; each
line's movement carries idempotency key
    warehouse_approval:<wa_id>:<line_id>
so already-posted lines are skipped.

approve() and reconcile_inventory() commit; everything else flushes only.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError

from ..errors import Conflict, DomainError, NotFound, NotReady, PartialSuccess, ValidationError
from ..extensions import db
from ..models import QualityControl, User, Warehouse, WarehouseApproval, WarehouseApprovalProduct
from ..time_utils import to_utc_z, utcnow
from ..validation import coerce_int, is_present, non_negative_int
from .audit_service import record_event
from .concurrency import commit_or_conflict, flush_or_conflict
from .document_service import next_document_number
from .inventory_service import LOCATION_FIELDS, post_inward

ELIGIBLE_QC_RESULTS = frozenset({"passed", "partial_pass"})
EDITABLE_STATUSES = frozenset({"pending", "in_progress"})


def get_warehouse_approval(wa_id: int) -> WarehouseApproval:
    wa = db.session.get(WarehouseApproval, wa_id)
    if not wa:
        raise NotFound(f"Warehouse approval {wa_id} not found")
    return wa


def _snapshot(wa: WarehouseApproval) -> dict:
    return {
        "status": wa.status,
        "overall_result": wa.overall_result,
        "inventory_integration_status": wa.inventory_integration_status,
    }


def idempotency_key(wa: WarehouseApproval, line: WarehouseApprovalProduct) -> str:
    return f"warehouse_approval:{wa.id}:{line.id}"


def _check_user(user_id) -> int | None:
    if user_id is None:
        return None
    user_id = coerce_int(user_id, "assigned_to_user_id")
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFound(f"User {user_id} not found")
    return user_id


def create_warehouse_approval(
    *,
    quality_control_id: int,
    warehouse_id: int,
    actor,
    assigned_to_user_id: int | None = None,
    remarks: str | None = None,
) -> WarehouseApproval:
    qc = db.session.get(QualityControl, quality_control_id)
    if not qc:
        raise NotFound(f"Quality control record {quality_control_id} not found")
    if qc.status != "approved":
        raise NotReady(f"QC {qc.qc_number} is {qc.status}; warehouse approval needs an approved QC record")

    eligible = [p for p in qc.products if p.qc_result in ELIGIBLE_QC_RESULTS and p.passed_qty > 0]
    if not eligible:
        raise NotReady(f"QC {qc.qc_number} has no passed products")

    if db.session.query(WarehouseApproval.id).filter_by(quality_control_id=qc.id).first():
        raise Conflict(f"QC {qc.qc_number} already has a warehouse approval")

    if db.session.get(Warehouse, warehouse_id) is None:
        raise NotFound(f"Warehouse {warehouse_id} not found")
    assigned_to_user_id = _check_user(assigned_to_user_id)

    wa = WarehouseApproval(
        wa_number=next_document_number(document_type="WAREHOUSE_APPROVAL"),
        quality_control_id=qc.id,
        invoice_receiving_id=qc.invoice_receiving_id,
        purchase_order_id=qc.purchase_order_id,
        warehouse_id=warehouse_id,
        status="pending",
        overall_result="pending",
        assigned_to_user_id=assigned_to_user_id,
        remarks=remarks,
        inventory_integration_status="pending",
        created_by_user_id=actor.id,
    )
    for p in eligible:
        wa.products.append(WarehouseApprovalProduct(
            qc_product_id=p.id,
            product_id=p.product_id,
            batch_number=p.batch_number,
            mfg_date=p.mfg_date,
            expiry_date=p.expiry_date,
            received_qty=p.received_qty,
            qc_passed_qty=p.passed_qty,
            unit_cost_cents=p.unit_price_cents,
            approved_qty=0,
            rejected_qty=0,
            status="pending",
            rejection_reasons=[],
        ))

    db.session.add(wa)
    flush_or_conflict("Warehouse approval")

    record_event(resource="warehouse_approval", resource_id=wa.id, action="create",
                 actor_user_id=actor.id, after=_snapshot(wa))
    current_app.logger.info("Warehouse approval %s opened for QC %s", wa.wa_number, qc.qc_number)
    return wa


def _line_status(line: WarehouseApprovalProduct) -> str:
    if line.approved_qty + line.rejected_qty == 0:
        return "pending"
    if line.rejected_qty == 0:
        return "approved"
    if line.approved_qty == 0:
        return "rejected"
    return "partial_approved"


def _overall(lines: list[WarehouseApprovalProduct]) -> str:
    statuses = [line.status for line in lines]
    if not statuses or "pending" in statuses:
        return "pending"
    if all(s == "approved" for s in statuses):
        return "approved"
    if all(s == "rejected" for s in statuses):
        return "rejected"
    return "partial_approved"


def update_product_approval(
    wa_id: int,
    line_id: int,
    *,
    actor,
    approved_qty,
    rejected_qty=0,
    location: dict | None = None,
    rejection_reasons: list | None = None,
    remarks: str | None = None,
) -> WarehouseApproval:
    """Set accepted / rejected quantities and storage location for one line."""
    wa = get_warehouse_approval(wa_id)
    if wa.status not in EDITABLE_STATUSES:
        raise NotReady(f"Warehouse approval {wa.wa_number} is {wa.status}; lines can no longer change")

    line = next((p for p in wa.products if p.id == line_id), None)
    if line is None:
        raise NotFound(f"Line {line_id} not found on {wa.wa_number}")

    approved = non_negative_int(approved_qty, "approved_qty")
    rejected = non_negative_int(rejected_qty or 0, "rejected_qty")
    if approved + rejected > line.qc_passed_qty:
        raise ValidationError(
            f"approved_qty + rejected_qty ({approved + rejected}) exceeds QC-passed quantity {line.qc_passed_qty}",
            qc_passed_qty=line.qc_passed_qty,
        )
    if approved + rejected == 0:
        raise ValidationError("approved_qty and rejected_qty cannot both be zero")

    reasons = list(rejection_reasons or [])
    if rejected and not reasons:
        raise ValidationError("rejection_reasons are required when rejecting units")

    if location is not None:
        if not isinstance(location, dict):
            raise ValidationError("location must be an object")
        for field in LOCATION_FIELDS:
            if field in location:
                value = location[field]
                if value is not None:
                    value = str(value).strip() or None
                setattr(line, field, value)

    before = _snapshot(wa)
    line.approved_qty = approved
    line.rejected_qty = rejected
    line.rejection_reasons = reasons
    line.remarks = remarks
    line.status = _line_status(line)
    line.checked_by_user_id = actor.id
    line.checked_at = utcnow()

    wa.overall_result = _overall(wa.products)
    if wa.status == "pending":
        wa.status = "in_progress"
    flush_or_conflict("Warehouse approval")

    record_event(resource="warehouse_approval", resource_id=wa.id, action="update_line",
                 actor_user_id=actor.id, before=before, after=_snapshot(wa),
                 note=f"line {line.id}: approved {approved}, rejected {rejected}")
    return wa


def assign_warehouse_approval(wa_id: int, *, assigned_to_user_id: int, actor) -> WarehouseApproval:
    wa = get_warehouse_approval(wa_id)
    if wa.status not in EDITABLE_STATUSES:
        raise NotReady(f"Warehouse approval {wa.wa_number} is {wa.status}; it can no longer be reassigned")
    before = {"assigned_to_user_id": wa.assigned_to_user_id}
    wa.assigned_to_user_id = _check_user(assigned_to_user_id)
    flush_or_conflict("Warehouse approval")
    record_event(resource="warehouse_approval", resource_id=wa.id, action="assign",
                 actor_user_id=actor.id, before=before,
                 after={"assigned_to_user_id": wa.assigned_to_user_id})
    return wa


def bulk_assign_warehouse_approvals(wa_ids: list, *, assigned_to_user_id: int, actor) -> dict:
    """Reassign every open record in wa_ids; unknown or closed ids are returned as skipped."""
    if not isinstance(wa_ids, list) or not wa_ids:
        raise ValidationError("warehouse_approval_ids must be a non-empty list")
    if assigned_to_user_id is None:
        raise ValidationError("assigned_to_user_id is required")
    user_id = _check_user(assigned_to_user_id)
    ids = list(dict.fromkeys(
        coerce_int(v, f"warehouse_approval_ids[{i}]") for i, v in enumerate(wa_ids)
    ))

    rows = (
        db.session.query(WarehouseApproval)
        .filter(WarehouseApproval.id.in_(ids), WarehouseApproval.status.in_(EDITABLE_STATUSES))
        .order_by(WarehouseApproval.id)
        .all()
    )
    befores = [(wa, wa.assigned_to_user_id) for wa in rows]
    for wa in rows:
        wa.assigned_to_user_id = user_id
    flush_or_conflict("Warehouse approval")

    for wa, previous in befores:
        record_event(resource="warehouse_approval", resource_id=wa.id, action="assign",
                     actor_user_id=actor.id, before={"assigned_to_user_id": previous},
                     after={"assigned_to_user_id": user_id}, note="bulk")
    assigned = [wa.id for wa in rows]
    return {"assigned": assigned, "skipped": [i for i in ids if i not in assigned]}


def submit_warehouse_approval(wa_id: int, *, actor, remarks: str | None = None) -> WarehouseApproval:
    wa = get_warehouse_approval(wa_id)
    if wa.status not in EDITABLE_STATUSES:
        raise NotReady(f"Warehouse approval {wa.wa_number} is {wa.status}")

    undecided = [line.id for line in wa.products if line.status == "pending"]
    if undecided:
        raise NotReady("Every line needs a decision before submitting", pending_lines=undecided)
    unplaced = [line.id for line in wa.products if line.approved_qty > 0 and not line.has_location]
    if unplaced:
        raise NotReady("Approved lines need a storage location (zone and rack)", lines_without_location=unplaced)

    before = _snapshot(wa)
    wa.status = "submitted"
    wa.overall_result = _overall(wa.products)
    if remarks:
        wa.remarks = remarks
    wa.submitted_by_user_id = actor.id
    wa.submitted_at = utcnow()
    flush_or_conflict("Warehouse approval")

    record_event(resource="warehouse_approval", resource_id=wa.id, action="submit",
                 actor_user_id=actor.id, before=before, after=_snapshot(wa), note=remarks)
    return wa


def _post_lines(wa: WarehouseApproval, actor_id: int | None) -> int:
    """Post every approved line; returns how many movements were written."""
    qc = wa.quality_control
    traceability = {
        "purchase_order_id": wa.purchase_order_id,
        "po_number": wa.purchase_order.po_number if wa.purchase_order else None,
        "invoice_receiving_id": wa.invoice_receiving_id,
        "invoice_number": wa.invoice_receiving.invoice_number if wa.invoice_receiving else None,
        "quality_control_id": wa.quality_control_id,
        "qc_number": qc.qc_number if qc else None,
        "warehouse_approval_id": wa.id,
        "wa_number": wa.wa_number,
    }

    posted = 0
    for line in wa.products:
        if line.approved_qty <= 0:
            continue
        _, movement = post_inward(
            product_id=line.product_id,
            batch_no=line.batch_number,
            warehouse_id=wa.warehouse_id,
            quantity=line.approved_qty,
            idempotency_key=idempotency_key(wa, line),
            unit_cost_cents=line.unit_cost_cents,
            location={f: getattr(line, f) for f in LOCATION_FIELDS},
            mfg_date=line.mfg_date,
            expiry_date=line.expiry_date,
            traceability=traceability,
            reference_type="warehouse_approval",
            reference_id=wa.id,
            reference_line_id=line.id,
            actor_id=actor_id,
        )
        if movement is not None:
            posted += 1
    return posted


def _integrate(wa: WarehouseApproval, actor_id: int | None) -> None:
    """
    Post inventory inside a savepoint and record the outcome, then commit.

    Raises PartialSuccess (after committing the failed status) when posting fails.
    """
    try:
        with db.session.begin_nested():
            posted = _post_lines(wa, actor_id)
    except (DomainError, SQLAlchemyError) as exc:
        message = exc.message if isinstance(exc, DomainError) else str(exc.__class__.__name__)
        wa.inventory_integration_status = "failed"
        wa.inventory_integration_error = message[:1000]
        record_event(resource="warehouse_approval", resource_id=wa.id, action="inventory_failed",
                     actor_user_id=actor_id, after=_snapshot(wa), note=message)
        commit_or_conflict()
        current_app.logger.warning("Inventory posting failed for %s: %s", wa.wa_number, message)
        raise PartialSuccess(
            f"Warehouse approval {wa.wa_number} is approved but inventory posting failed",
            resource=wa.to_dict(),
            cause=message,
        )

    wa.inventory_integration_status = "completed"
    wa.inventory_integration_error = None
    wa.inventory_integrated_at = utcnow()
    record_event(resource="warehouse_approval", resource_id=wa.id, action="inventory_posted",
                 actor_user_id=actor_id, after=_snapshot(wa), note=f"{posted} line(s) posted")
    commit_or_conflict()
    current_app.logger.info("Inventory posted for %s (%s line(s))", wa.wa_number, posted)


def approve_warehouse_approval(wa_id: int, *, actor, remarks: str | None = None) -> WarehouseApproval:
    wa = get_warehouse_approval(wa_id)
    if wa.status != "submitted":
        raise NotReady(f"Warehouse approval {wa.wa_number} must be submitted before approval (status: {wa.status})")

    before = _snapshot(wa)
    wa.status = "approved"
    wa.approved_by_user_id = actor.id
    wa.approved_at = utcnow()
    if remarks:
        wa.remarks = remarks
    wa.inventory_integration_status = "pending"
    flush_or_conflict("Warehouse approval")
    record_event(resource="warehouse_approval", resource_id=wa.id, action="approve",
                 actor_user_id=actor.id, before=before, after=_snapshot(wa), note=remarks)

    _integrate(wa, actor.id)
    return wa


def reconcile_inventory(wa_id: int, *, actor=None) -> WarehouseApproval:
    """Replay inventory posting for an approved record; already-posted lines are skipped."""
    wa = get_warehouse_approval(wa_id)
    if wa.status != "approved":
        raise NotReady(f"Warehouse approval {wa.wa_number} is {wa.status}; only approved records post inventory")
    if wa.inventory_integration_status == "completed":
        return wa

    _integrate(wa, actor.id if actor else None)
    return wa


def reject_warehouse_approval(wa_id: int, *, actor, reason: str | None) -> WarehouseApproval:
    wa = get_warehouse_approval(wa_id)
    if wa.status != "submitted":
        raise NotReady(f"Warehouse approval {wa.wa_number} must be submitted before rejection (status: {wa.status})")
    if not is_present(reason):
        raise ValidationError("A rejection reason is required")

    before = _snapshot(wa)
    wa.status = "rejected"
    wa.rejected_by_user_id = actor.id
    wa.rejected_at = utcnow()
    wa.rejection_reason = reason.strip()
    flush_or_conflict("Warehouse approval")

    record_event(resource="warehouse_approval", resource_id=wa.id, action="reject",
                 actor_user_id=actor.id, before=before, after=_snapshot(wa), note=reason)
    return wa


def list_warehouse_approvals(
    *,
    status: str | None = None,
    integration_status: str | None = None,
    warehouse_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[WarehouseApproval], int]:
    query = db.session.query(WarehouseApproval)
    if status:
        query = query.filter(WarehouseApproval.status == status)
    if integration_status:
        query = query.filter(WarehouseApproval.inventory_integration_status == integration_status)
    if warehouse_id is not None:
        query = query.filter(WarehouseApproval.warehouse_id == warehouse_id)
    total = query.count()
    rows = query.order_by(WarehouseApproval.id.desc()).offset(max(offset, 0)).limit(max(limit, 1)).all()
    return rows, total


def pending_integrations() -> list[WarehouseApproval]:
    """Approved records whose inventory posting has not completed."""
    return (
        db.session.query(WarehouseApproval)
        .filter(
            WarehouseApproval.status == "approved",
            WarehouseApproval.inventory_integration_status != "completed",
        )
        .order_by(WarehouseApproval.id)
        .all()
    )


def _filtered(query, *, created_from=None, created_to=None, warehouse_id=None):
    if created_from is not None:
        query = query.filter(WarehouseApproval.created_at >= created_from)
    if created_to is not None:
        query = query.filter(WarehouseApproval.created_at < created_to)
    if warehouse_id is not None:
        query = query.filter(WarehouseApproval.warehouse_id == warehouse_id)
    return query


def warehouse_approval_statistics(
    *,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    warehouse_id: int | None = None,
) -> dict:
    """
    Counts by status, overall result, integration outcome and line status,
    plus approval turnaround (created -> approved) in hours.
    """
    window = {"created_from": created_from, "created_to": created_to, "warehouse_id": warehouse_id}

    def _count_by(column):
        query = db.session.query(column, db.func.count(WarehouseApproval.id))
        return dict(_filtered(query, **window).group_by(column).all())

    by_status = _count_by(WarehouseApproval.status)
    lines = _filtered(
        db.session.query(WarehouseApprovalProduct.status, db.func.count(WarehouseApprovalProduct.id))
        .join(WarehouseApproval, WarehouseApproval.id == WarehouseApprovalProduct.warehouse_approval_id),
        **window,
    ).group_by(WarehouseApprovalProduct.status).all()

    approved = _filtered(
        db.session.query(WarehouseApproval.created_at, WarehouseApproval.approved_at)
        .filter(WarehouseApproval.approved_at.isnot(None)),
        **window,
    ).all()
    hours = [(approved_at - created_at).total_seconds() / 3600 for created_at, approved_at in approved]

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_overall_result": _count_by(WarehouseApproval.overall_result),
        "by_integration_status": _count_by(WarehouseApproval.inventory_integration_status),
        "products_by_status": dict(lines),
        "approval_hours": {
            "average": round(sum(hours) / len(hours), 2) if hours else 0,
            "minimum": round(min(hours), 2) if hours else 0,
            "maximum": round(max(hours), 2) if hours else 0,
        },
    }


def warehouse_approval_workload(*, active_only: bool = True) -> list[dict]:
    """Records per assignee, busiest first. user_id None is the unassigned bucket."""
    query = db.session.query(
        WarehouseApproval.assigned_to_user_id,
        db.func.count(WarehouseApproval.id),
        db.func.sum(case((WarehouseApproval.status == "pending", 1), else_=0)),
        db.func.sum(case((WarehouseApproval.status == "in_progress", 1), else_=0)),
    )
    if active_only:
        query = query.filter(WarehouseApproval.status.in_(EDITABLE_STATUSES))
    rows = query.group_by(WarehouseApproval.assigned_to_user_id).all()

    user_ids = [r[0] for r in rows if r[0] is not None]
    names = dict(db.session.query(User.id, User.username).filter(User.id.in_(user_ids)).all()) if user_ids else {}
    workload = [
        {
            "user_id": user_id,
            "username": names.get(user_id) if user_id is not None else None,
            "total": total,
            "pending": int(pending or 0),
            "in_progress": int(in_progress or 0),
        }
        for user_id, total, pending, in_progress in rows
    ]
    workload.sort(key=lambda w: (-w["total"], w["user_id"] is None, w["user_id"] or 0))
    return workload


def warehouse_approval_dashboard(*, days: int = 30, warehouse_id: int | None = None, recent: int = 10) -> dict:
    """Statistics over the last `days` days, latest activity and open integration work."""
    since = utcnow() - timedelta(days=max(days, 1))
    recent_rows = (
        _filtered(db.session.query(WarehouseApproval), created_from=since, warehouse_id=warehouse_id)
        .order_by(WarehouseApproval.updated_at.desc(), WarehouseApproval.id.desc())
        .limit(max(recent, 1))
        .all()
    )
    return {
        "days": max(days, 1),
        "statistics": warehouse_approval_statistics(created_from=since, warehouse_id=warehouse_id),
        "recent": [
            {
                "id": wa.id,
                "wa_number": wa.wa_number,
                "status": wa.status,
                "assigned_to_user_id": wa.assigned_to_user_id,
                "inventory_integration_status": wa.inventory_integration_status,
                "products": len(wa.products),
                "updated_at": to_utc_z(wa.updated_at),
            }
            for wa in recent_rows
        ],
        "pending_integrations": len(pending_integrations()),
        "workload": warehouse_approval_workload(),
    }
