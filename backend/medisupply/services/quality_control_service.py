# Overview: Quality-control ledger; inspection records, item results and approval.

"""
Quality Control Service

STATUS: pending -> in_progress -> submitted -> approved | rejected

RULES:
- One QC record per invoice receiving
- Items start pending; the first item update moves the record to in_progress
- Item updates only while pending / in_progress, and only by the assigned
  inspector or a holder of QC_APPROVE
- Product result is derived from its items (see domain/quality.py)
- submit requires every product resolved; approve / reject only from
  submitted; reject needs a reason

QualityControl rows carry a version column, so a concurrent writer that
loaded a stale row fails its flush with StaleDataError, surfaced as Conflict.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import case

from ..domain.quality import (
    LIGHT_CONDITIONS,
    PRIORITIES,
    QC_REASONS,
    item_quantities,
    normalize_item_status,
    normalize_qc_type,
    overall_result,
    product_result,
    reason_summary,
)
from ..errors import Conflict, Forbidden, NotFound, NotReady, ValidationError
from ..extensions import db
from ..models import InvoiceReceiving, QCItem, QCProduct, QualityControl, User
from ..time_utils import utcnow
from ..validation import coerce_int, is_present, one_of
from .audit_service import record_event
from .concurrency import flush_or_conflict
from .document_service import next_document_number
from .permission_service import user_has_permission

EDITABLE_STATUSES = frozenset({"pending", "in_progress"})


def get_qc(qc_id: int) -> QualityControl:
    qc = db.session.get(QualityControl, qc_id)
    if not qc:
        raise NotFound(f"Quality control record {qc_id} not found")
    return qc


def _snapshot(qc: QualityControl) -> dict:
    return {"status": qc.status, "overall_result": qc.overall_result}


def _optional_decimal(value, field: str) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")


def _check_user(user_id) -> int | None:
    if user_id is None:
        return None
    user_id = coerce_int(user_id, "assigned_to_user_id")
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFound(f"User {user_id} not found")
    return user_id


def create_qc(
    *,
    invoice_receiving_id: int,
    actor,
    assigned_to_user_id: int | None = None,
    qc_type: str = "standard",
    priority: str = "medium",
    environment: dict | None = None,
    invoice_line_ids: list | None = None,
) -> QualityControl:
    """
    Open a QC record for an invoice receiving with pending items.

    invoice_line_ids optionally restricts inspection to some invoice lines.
    """
    invoice = db.session.get(InvoiceReceiving, invoice_receiving_id)
    if not invoice:
        raise NotFound(f"Invoice receiving {invoice_receiving_id} not found")

    if db.session.query(QualityControl.id).filter_by(invoice_receiving_id=invoice.id).first():
        raise Conflict(f"Invoice {invoice.invoice_number} already has a QC record")

    try:
        qc_type = normalize_qc_type(qc_type or "standard")
    except ValueError as e:
        raise ValidationError(str(e))
    priority = one_of(priority or "medium", "priority", PRIORITIES)

    lines = invoice.lines
    if invoice_line_ids is not None:
        wanted = {coerce_int(i, "invoice_line_ids") for i in invoice_line_ids}
        lines = [line for line in lines if line.id in wanted]
        if len(lines) != len(wanted):
            raise ValidationError("invoice_line_ids must reference lines of this invoice")
    if not lines:
        raise ValidationError("QC record needs at least one product line")

    environment = environment or {}
    light = environment.get("light_condition") or "normal"
    one_of(light, "light_condition", LIGHT_CONDITIONS)

    qc = QualityControl(
        qc_number=next_document_number(document_type="QUALITY_CONTROL"),
        invoice_receiving_id=invoice.id,
        purchase_order_id=invoice.purchase_order_id,
        qc_type=qc_type,
        priority=priority,
        status="pending",
        overall_result="pending",
        assigned_to_user_id=_check_user(assigned_to_user_id),
        temperature_c=_optional_decimal(environment.get("temperature_c"), "temperature_c"),
        humidity_pct=_optional_decimal(environment.get("humidity_pct"), "humidity_pct"),
        light_condition=light,
        created_by_user_id=actor.id,
    )

    max_items = current_app.config.get("QC_MAX_ITEMS_PER_PRODUCT", 50)
    for line in lines:
        product = QCProduct(
            invoice_line_id=line.id,
            product_id=line.product_id,
            received_qty=line.received_qty,
            batch_number=line.batch_number,
            mfg_date=line.mfg_date,
            expiry_date=line.expiry_date,
            unit_price_cents=line.unit_price_cents,
            qc_result="pending",
            passed_qty=0,
            failed_qty=0,
            qc_summary={},
        )
        for number, qty in enumerate(item_quantities(line.received_qty, max_items), start=1):
            product.items.append(QCItem(item_number=number, quantity=qty, status="pending", reasons=[]))
        qc.products.append(product)

    db.session.add(qc)
    flush_or_conflict("Quality control record")

    record_event(resource="quality_control", resource_id=qc.id, action="create",
                 actor_user_id=actor.id, after=_snapshot(qc))
    current_app.logger.info("QC %s opened for invoice %s", qc.qc_number, invoice.invoice_number)
    return qc


def _recompute_product(product: QCProduct) -> None:
    product.qc_result = product_result(item.status for item in product.items)
    product.passed_qty = sum(i.quantity for i in product.items if i.status == "passed")
    product.failed_qty = sum(i.quantity for i in product.items if i.status == "failed")
    product.qc_summary = reason_summary(
        (i.status, i.quantity, i.reasons) for i in product.items
    )


def _require_inspector(qc: QualityControl, actor) -> None:
    if qc.assigned_to_user_id in (None, actor.id):
        return
    if user_has_permission(actor.id, "QC_APPROVE"):
        return
    raise Forbidden("Only the assigned inspector can record QC results", qc_id=qc.id)


def update_item_result(
    qc_id: int,
    *,
    qc_product_id: int,
    item_id: int,
    status: str,
    actor,
    reasons: list | None = None,
    remarks: str | None = None,
) -> QualityControl:
    """Record one item's outcome and recompute the owning product's result."""
    qc = get_qc(qc_id)
    if qc.status not in EDITABLE_STATUSES:
        raise NotReady(f"QC {qc.qc_number} is {qc.status}; results can no longer change")
    _require_inspector(qc, actor)

    product = next((p for p in qc.products if p.id == qc_product_id), None)
    if product is None:
        raise NotFound(f"QC product {qc_product_id} not found on {qc.qc_number}")
    item = next((i for i in product.items if i.id == item_id), None)
    if item is None:
        raise NotFound(f"QC item {item_id} not found")

    try:
        normalized = normalize_item_status(status)
    except ValueError as e:
        raise ValidationError(str(e))

    reasons = list(reasons or [])
    unknown = [r for r in reasons if r not in QC_REASONS]
    if unknown:
        raise ValidationError(f"Unknown QC reasons: {', '.join(unknown)}")
    # A legacy failure code doubles as the reason when none was given
    if not reasons and status != normalized and status in QC_REASONS and status != "received_correctly":
        reasons = [status]
    if normalized == "failed" and not reasons:
        reasons = ["other"]

    before = _snapshot(qc)

    item.status = normalized
    item.reasons = reasons
    item.remarks = remarks
    item.inspected_by_user_id = actor.id
    item.inspected_at = utcnow()

    _recompute_product(product)
    qc.overall_result = overall_result(p.qc_result for p in qc.products)
    if qc.status == "pending":
        qc.status = "in_progress"

    flush_or_conflict("Quality control record")
    record_event(resource="quality_control", resource_id=qc.id, action="update_item",
                 actor_user_id=actor.id, before=before, after=_snapshot(qc),
                 note=f"product {product.product_id} item {item.item_number}: {normalized}")
    return qc


def assign_qc(qc_id: int, *, assigned_to_user_id: int, actor) -> QualityControl:
    qc = get_qc(qc_id)
    if qc.status not in EDITABLE_STATUSES:
        raise NotReady(f"QC {qc.qc_number} is {qc.status}; it can no longer be reassigned")
    before = {"assigned_to_user_id": qc.assigned_to_user_id}
    qc.assigned_to_user_id = _check_user(assigned_to_user_id)
    flush_or_conflict("Quality control record")
    record_event(resource="quality_control", resource_id=qc.id, action="assign",
                 actor_user_id=actor.id, before=before,
                 after={"assigned_to_user_id": qc.assigned_to_user_id})
    return qc


def bulk_assign_qcs(
    qc_ids: list,
    *,
    assigned_to_user_id: int,
    actor,
    priority: str | None = None,
) -> dict:
    """
    Hand several open records to one inspector.

    Only pending / in-progress records move; unknown or closed ids come back
    under "skipped" instead of failing the batch.
    """
    if not isinstance(qc_ids, list) or not qc_ids:
        raise ValidationError("qc_ids must be a non-empty list")
    if assigned_to_user_id is None:
        raise ValidationError("assigned_to_user_id is required")
    user_id = _check_user(assigned_to_user_id)
    if priority is not None:
        priority = one_of(priority, "priority", PRIORITIES)
    ids = list(dict.fromkeys(coerce_int(v, f"qc_ids[{i}]") for i, v in enumerate(qc_ids)))

    rows = (
        db.session.query(QualityControl)
        .filter(QualityControl.id.in_(ids), QualityControl.status.in_(EDITABLE_STATUSES))
        .order_by(QualityControl.id)
        .all()
    )
    changes = []
    for qc in rows:
        before = {"assigned_to_user_id": qc.assigned_to_user_id, "priority": qc.priority}
        qc.assigned_to_user_id = user_id
        if priority:
            qc.priority = priority
        changes.append((qc, before))
    flush_or_conflict("Quality control record")

    for qc, before in changes:
        record_event(resource="quality_control", resource_id=qc.id, action="assign",
                     actor_user_id=actor.id, before=before,
                     after={"assigned_to_user_id": qc.assigned_to_user_id, "priority": qc.priority},
                     note="bulk")
    assigned = [qc.id for qc in rows]
    return {"assigned": assigned, "skipped": [i for i in ids if i not in assigned]}


def submit_qc(qc_id: int, *, actor, remarks: str | None = None) -> QualityControl:
    qc = get_qc(qc_id)
    if qc.status not in EDITABLE_STATUSES:
        raise NotReady(f"QC {qc.qc_number} is {qc.status}; only pending or in-progress records can be submitted")
    _require_inspector(qc, actor)

    pending = [p.product_id for p in qc.products if p.qc_result == "pending"]
    if pending:
        raise NotReady("Every product must be inspected before submitting", pending_products=pending)

    before = _snapshot(qc)
    qc.overall_result = overall_result(p.qc_result for p in qc.products)
    qc.status = "submitted"
    qc.qc_remarks = remarks
    qc.submitted_by_user_id = actor.id
    qc.submitted_at = utcnow()
    flush_or_conflict("Quality control record")

    record_event(resource="quality_control", resource_id=qc.id, action="submit",
                 actor_user_id=actor.id, before=before, after=_snapshot(qc), note=remarks)
    return qc


def approve_qc(qc_id: int, *, actor, remarks: str | None = None) -> QualityControl:
    qc = get_qc(qc_id)
    if qc.status != "submitted":
        raise NotReady(f"QC {qc.qc_number} must be submitted before approval (status: {qc.status})")

    before = _snapshot(qc)
    qc.status = "approved"
    qc.approved_by_user_id = actor.id
    qc.approved_at = utcnow()
    qc.approval_remarks = remarks
    flush_or_conflict("Quality control record")

    record_event(resource="quality_control", resource_id=qc.id, action="approve",
                 actor_user_id=actor.id, before=before, after=_snapshot(qc), note=remarks)
    current_app.logger.info("QC %s approved (%s) by user %s", qc.qc_number, qc.overall_result, actor.id)
    return qc


def reject_qc(qc_id: int, *, actor, reason: str | None) -> QualityControl:
    qc = get_qc(qc_id)
    if qc.status != "submitted":
        raise NotReady(f"QC {qc.qc_number} must be submitted before rejection (status: {qc.status})")
    if not is_present(reason):
        raise ValidationError("A rejection reason is required")

    before = _snapshot(qc)
    qc.status = "rejected"
    qc.rejected_by_user_id = actor.id
    qc.rejected_at = utcnow()
    qc.rejection_reason = reason.strip()
    flush_or_conflict("Quality control record")

    record_event(resource="quality_control", resource_id=qc.id, action="reject",
                 actor_user_id=actor.id, before=before, after=_snapshot(qc), note=reason)
    current_app.logger.info("QC %s rejected by user %s", qc.qc_number, actor.id)
    return qc


def list_qcs(
    *,
    status: str | None = None,
    assigned_to_user_id: int | None = None,
    overall: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[QualityControl], int]:
    query = db.session.query(QualityControl)
    if status:
        query = query.filter(QualityControl.status == status)
    if overall:
        query = query.filter(QualityControl.overall_result == overall)
    if assigned_to_user_id is not None:
        query = query.filter(QualityControl.assigned_to_user_id == assigned_to_user_id)
    total = query.count()
    rows = query.order_by(QualityControl.id.desc()).offset(max(offset, 0)).limit(max(limit, 1)).all()
    return rows, total


def qc_statistics() -> dict:
    """Dashboard counts by status and by overall result."""
    by_status = dict(
        db.session.query(QualityControl.status, db.func.count(QualityControl.id))
        .group_by(QualityControl.status).all()
    )
    by_result = dict(
        db.session.query(QualityControl.overall_result, db.func.count(QualityControl.id))
        .group_by(QualityControl.overall_result).all()
    )
    product_results = dict(
        db.session.query(QCProduct.qc_result, db.func.count(QCProduct.id))
        .group_by(QCProduct.qc_result).all()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_overall_result": by_result,
        "products_by_result": product_results,
    }


def qc_workload(*, active_only: bool = True) -> list[dict]:
    """Records per assignee, busiest first. user_id None is the unassigned bucket."""
    query = db.session.query(
        QualityControl.assigned_to_user_id,
        db.func.count(QualityControl.id),
        db.func.sum(case((QualityControl.status == "pending", 1), else_=0)),
        db.func.sum(case((QualityControl.status == "in_progress", 1), else_=0)),
        db.func.sum(case((QualityControl.priority == "high", 1), else_=0)),
        db.func.sum(case((QualityControl.priority == "urgent", 1), else_=0)),
    )
    if active_only:
        query = query.filter(QualityControl.status.in_(EDITABLE_STATUSES))
    rows = query.group_by(QualityControl.assigned_to_user_id).all()

    user_ids = [r[0] for r in rows if r[0] is not None]
    names = dict(db.session.query(User.id, User.username).filter(User.id.in_(user_ids)).all()) if user_ids else {}
    workload = [
        {
            "user_id": user_id,
            "username": names.get(user_id) if user_id is not None else None,
            "total": total,
            "pending": int(pending or 0),
            "in_progress": int(in_progress or 0),
            "high_priority": int(high or 0),
            "urgent": int(urgent or 0),
        }
        for user_id, total, pending, in_progress, high, urgent in rows
    ]
    workload.sort(key=lambda w: (-w["total"], w["user_id"] is None, w["user_id"] or 0))
    return workload
