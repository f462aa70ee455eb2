# Overview: Purchase-order state machine; creation, line edits and validated stage transitions.

"""
Purchase Order Service

LIFECYCLE:
1. Created in the initial workflow stage (DRAFT) with a "create" history entry
2. Lines editable only while the current stage allows "edit"
3. Every other stage change goes through transition(), which checks, in order:
     a. action listed on the current stage       else InvalidTransition
     b. actor holds the stage's permissions      else Forbidden
     c. an active transition exists              else InvalidTransition
     d. required payload fields are present      else MissingRequiredField
   then moves stage + status with one conditional UPDATE keyed on the
   expected from-stage (lost race -> Conflict) and appends history.

History is append-only; replay_history() re-walks it against the
transition table and must land on the current stage.

Services flush; routes commit.
"""

from __future__ import annotations

import json
from datetime import date

from flask import current_app
from sqlalchemy import update

from ..domain.pricing import DISCOUNT_TYPES, line_totals, order_totals
from ..errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    MissingRequiredField,
    NotFound,
    NotReady,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Principal,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    WorkflowHistoryEntry,
    WorkflowStage,
    WorkflowTransition,
)
from ..time_utils import today, utcnow
from ..validation import (
    coerce_int,
    is_present,
    non_negative_int,
    one_of,
    optional_date,
    percentage,
    positive_int,
    price_cents,
)
from .audit_service import record_event
from .document_service import next_document_number
from .permission_service import log_security_event
from .workflow_service import can_perform, find_transition, get_initial_stage, stage_permission_gap

APPROVED_STAGE = "APPROVED_FINAL"
RECEIVE_ACTIONS = frozenset({"receive", "receive_partial"})


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise NotFound(f"Purchase order {po_id} not found")
    return po


def _po_snapshot(po: PurchaseOrder) -> dict:
    return {
        "status": po.status,
        "stage": po.current_stage.code if po.current_stage else None,
        "grand_total_cents": po.grand_total_cents,
    }


def _parse_lines(lines: list) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    parsed = []
    for idx, raw in enumerate(lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{idx}] must be an object")

        product_id = positive_int(raw.get("product_id"), f"lines[{idx}].product_id")
        if db.session.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")

        quantity = positive_int(raw.get("quantity"), f"lines[{idx}].quantity")
        foc = non_negative_int(raw.get("foc_quantity", 0), f"lines[{idx}].foc_quantity")
        if foc > quantity:
            raise ValidationError(f"lines[{idx}].foc_quantity cannot exceed quantity")

        discount_type = one_of(raw.get("discount_type", "amount"), f"lines[{idx}].discount_type", DISCOUNT_TYPES)
        if discount_type == "percentage":
            discount_value = percentage(raw.get("discount_value", 0), f"lines[{idx}].discount_value")
        else:
            discount_value = non_negative_int(raw.get("discount_value", 0), f"lines[{idx}].discount_value")

        parsed.append({
            "product_id": product_id,
            "quantity": quantity,
            "foc_quantity": foc,
            "unit_price_cents": price_cents(raw.get("unit_price_cents"), f"lines[{idx}].unit_price_cents"),
            "discount_type": discount_type,
            "discount_value": discount_value,
            "gst_percentage": percentage(raw.get("gst_percentage", 0), f"lines[{idx}].gst_percentage"),
        })
    return parsed


def _replace_lines(po: PurchaseOrder, parsed: list[dict]) -> None:
    po.lines.clear()
    db.session.flush()

    totals = []
    for number, data in enumerate(parsed, start=1):
        t = line_totals(
            quantity=data["quantity"],
            foc_quantity=data["foc_quantity"],
            unit_price_cents=data["unit_price_cents"],
            discount_type=data["discount_type"],
            discount_value=data["discount_value"],
            gst_percentage=data["gst_percentage"],
        )
        totals.append(t)
        po.lines.append(PurchaseOrderLine(
            line_number=number,
            discount_cents=t.discount_cents,
            tax_cents=t.tax_cents,
            total_amount_cents=t.total_cents,
            received_qty=0,
            **data,
        ))

    header = order_totals(totals)
    po.sub_total_cents = header.sub_total_cents
    po.discount_total_cents = header.discount_total_cents
    po.tax_total_cents = header.tax_total_cents
    po.grand_total_cents = header.grand_total_cents


def _check_principal(principal_id) -> int | None:
    if principal_id is None:
        return None
    principal_id = positive_int(principal_id, "principal_id")
    if db.session.get(Principal, principal_id) is None:
        raise NotFound(f"Principal {principal_id} not found")
    return principal_id


def _append_history(
    po: PurchaseOrder,
    *,
    from_stage_id: int | None,
    stage_id: int,
    action: str,
    actor_id: int,
    remarks: str | None,
    payload: dict | None,
) -> WorkflowHistoryEntry:
    last = (
        db.session.query(db.func.max(WorkflowHistoryEntry.sequence))
        .filter(WorkflowHistoryEntry.purchase_order_id == po.id)
        .scalar()
    )
    entry = WorkflowHistoryEntry(
        purchase_order_id=po.id,
        sequence=(last or 0) + 1,
        from_stage_id=from_stage_id,
        stage_id=stage_id,
        action=action,
        action_by_user_id=actor_id,
        action_at=utcnow(),
        remarks=remarks,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def create_purchase_order(
    *,
    lines: list,
    actor,
    principal_id: int | None = None,
    po_date: date | str | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """Create a purchase order in the initial stage. Flushes only."""
    stage = get_initial_stage()
    parsed = _parse_lines(lines)

    po = PurchaseOrder(
        po_number=next_document_number(document_type="PURCHASE_ORDER"),
        po_date=optional_date(po_date, "po_date") or today(),
        principal_id=_check_principal(principal_id),
        current_stage_id=stage.id,
        status=stage.status_value,
        notes=notes,
        created_by_user_id=actor.id,
    )
    db.session.add(po)
    db.session.flush()

    _replace_lines(po, parsed)
    db.session.flush()

    _append_history(po, from_stage_id=None, stage_id=stage.id, action="create",
                    actor_id=actor.id, remarks=notes, payload=None)
    record_event(resource="purchase_order", resource_id=po.id, action="create",
                 actor_user_id=actor.id, after=_po_snapshot(po))

    current_app.logger.info("Purchase order %s created by user %s", po.po_number, actor.id)
    return po


def update_purchase_order(
    po_id: int,
    *,
    actor,
    lines: list | None = None,
    principal_id: int | None = None,
    po_date: date | str | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """Edit header fields and/or replace lines while the stage allows "edit"."""
    po = get_purchase_order(po_id)
    stage = po.current_stage

    if "edit" not in (stage.allowed_actions or []):
        raise InvalidTransition(
            f"Purchase order cannot be edited in stage {stage.code}",
            stage=stage.code, action="edit",
        )
    if not can_perform(actor, po, "edit"):
        raise Forbidden(f"Not allowed to edit purchase orders in stage {stage.code}", stage=stage.code)

    before = _po_snapshot(po)

    if lines is not None:
        _replace_lines(po, _parse_lines(lines))
    if principal_id is not None:
        po.principal_id = _check_principal(principal_id)
    if po_date is not None:
        po.po_date = optional_date(po_date, "po_date") or po.po_date
    if notes is not None:
        po.notes = notes

    po.updated_by_user_id = actor.id
    db.session.flush()

    record_event(resource="purchase_order", resource_id=po.id, action="update",
                 actor_user_id=actor.id, before=before, after=_po_snapshot(po))
    return po


def delete_purchase_order(po_id: int, *, actor) -> None:
    """Delete a purchase order that never left the initial stage."""
    po = get_purchase_order(po_id)
    if not po.current_stage.is_initial:
        raise NotReady(
            f"Only purchase orders in the initial stage can be deleted (current: {po.current_stage.code})"
        )

    before = _po_snapshot(po)
    db.session.query(WorkflowHistoryEntry).filter_by(purchase_order_id=po.id).delete(synchronize_session=False)
    db.session.delete(po)
    db.session.flush()

    record_event(resource="purchase_order", resource_id=po_id, action="delete",
                 actor_user_id=actor.id, before=before)


def _parse_received(po: PurchaseOrder, products) -> list[tuple[PurchaseOrderLine, int]]:
    """Map a receive payload onto PO lines: [{line_id | product_id, received_qty}]."""
    if not isinstance(products, list):
        raise ValidationError("products must be a list")

    by_id = {line.id: line for line in po.lines}
    by_product = {line.product_id: line for line in po.lines}

    pending: dict[int, int] = {}
    result = []
    for idx, item in enumerate(products, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"products[{idx}] must be an object")
        if item.get("line_id") is not None:
            line = by_id.get(coerce_int(item["line_id"], f"products[{idx}].line_id"))
        else:
            line = by_product.get(coerce_int(item.get("product_id"), f"products[{idx}].product_id"))
        if line is None:
            raise ValidationError(f"products[{idx}] does not match a line of this purchase order")

        qty = positive_int(item.get("received_qty"), f"products[{idx}].received_qty")
        pending[line.id] = pending.get(line.id, 0) + qty
        if line.received_qty + pending[line.id] > line.quantity:
            raise ValidationError(
                f"Received quantity for line {line.line_number} would exceed ordered quantity {line.quantity}"
            )
        result.append((line, qty))
    return result


def _check_receipt_completeness(po: PurchaseOrder, action: str, received) -> None:
    """receive closes every line; receive_partial must leave at least one line short."""
    incoming: dict[int, int] = {}
    for line, qty in received:
        incoming[line.id] = incoming.get(line.id, 0) + qty
    short = [
        line.line_number for line in po.lines
        if line.received_qty + incoming.get(line.id, 0) < line.quantity
    ]
    if action == "receive" and short:
        raise NotReady(
            f"Purchase order {po.po_number} still has short lines; use receive_partial",
            short_lines=short,
        )
    if action == "receive_partial" and not short:
        raise NotReady(f"Every line of purchase order {po.po_number} would be complete; use receive")


def transition(po_id: int, action: str, payload: dict | None, actor) -> PurchaseOrder:
    """
    Move a purchase order along the workflow graph.

    Raises InvalidTransition, Forbidden, MissingRequiredField, NotReady or Conflict;
    nothing is written unless every check passes. Flushes only.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")
    if not action or not isinstance(action, str):
        raise ValidationError("action is required")

    po = get_purchase_order(po_id)
    from_stage = po.current_stage

    if action not in (from_stage.allowed_actions or []):
        raise InvalidTransition(
            f"Action '{action}' is not allowed in stage {from_stage.code}",
            stage=from_stage.code, action=action,
        )

    missing = stage_permission_gap(actor.id, from_stage) if actor.is_active else ["ACTIVE_USER"]
    if missing:
        log_security_event(
            user_id=actor.id,
            event_type="STAGE_ACTION_DENIED",
            success=False,
            resource=f"purchase_order:{po.id}",
            action=action,
            reason=f"Missing permissions at {from_stage.code}: {', '.join(missing)}",
        )
        raise Forbidden(
            f"Not allowed to {action} purchase orders in stage {from_stage.code}",
            stage=from_stage.code, action=action, missing_permissions=missing,
        )

    t = find_transition(from_stage.id, action)
    if t is None:
        raise InvalidTransition(
            f"No transition defined for '{action}' from stage {from_stage.code}",
            stage=from_stage.code, action=action,
        )

    for field in t.required_fields or []:
        if not is_present(payload.get(field)):
            raise MissingRequiredField(field)

    received = []
    if action in RECEIVE_ACTIONS:
        received = _parse_received(po, payload["products"])
        _check_receipt_completeness(po, action, received)

    to_stage = t.to_stage
    now = utcnow()
    values = {
        "current_stage_id": to_stage.id,
        "status": to_stage.status_value,
        "updated_by_user_id": actor.id,
        "updated_at": now,
    }
    if to_stage.code == APPROVED_STAGE:
        values["approved_by_user_id"] = actor.id
        values["approved_at"] = now

    before = _po_snapshot(po)
    result = db.session.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po.id, PurchaseOrder.current_stage_id == from_stage.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise Conflict(
            f"Purchase order {po.po_number} changed stage concurrently",
            expected_stage=from_stage.code,
        )
    db.session.refresh(po)

    for line, qty in received:
        line.received_qty += qty

    remarks = payload.get("remarks")
    changes = {k: v for k, v in payload.items() if k != "remarks"}
    _append_history(po, from_stage_id=from_stage.id, stage_id=to_stage.id, action=action,
                    actor_id=actor.id, remarks=remarks, payload=changes or None)
    record_event(resource="purchase_order", resource_id=po.id, action=action,
                 actor_user_id=actor.id, before=before, after=_po_snapshot(po), note=remarks)

    current_app.logger.info(
        "Purchase order %s: %s --%s--> %s by user %s",
        po.po_number, from_stage.code, action, to_stage.code, actor.id,
    )
    return po


def get_history(po_id: int) -> list[WorkflowHistoryEntry]:
    get_purchase_order(po_id)
    return (
        db.session.query(WorkflowHistoryEntry)
        .filter_by(purchase_order_id=po_id)
        .order_by(WorkflowHistoryEntry.sequence)
        .all()
    )


def replay_history(po_id: int) -> dict:
    """
    Re-walk the history log from the initial stage.

    Every step must follow a transition (active or since retired) from the
    previous stage, and the walk must end on the order's current stage.
    """
    po = get_purchase_order(po_id)
    entries = get_history(po_id)
    problems: list[str] = []

    stage_id = None
    for expected_seq, entry in enumerate(entries, start=1):
        if entry.sequence != expected_seq:
            problems.append(f"Sequence gap: expected {expected_seq}, found {entry.sequence}")

        if expected_seq == 1:
            first_stage = db.session.get(WorkflowStage, entry.stage_id)
            if entry.action != "create" or first_stage is None or not first_stage.is_initial:
                problems.append("History does not start with a create entry in the initial stage")
            stage_id = entry.stage_id
            continue

        if entry.from_stage_id != stage_id:
            problems.append(f"Entry {entry.sequence} starts from a different stage than the previous entry")

        exists = db.session.query(WorkflowTransition.id).filter_by(
            from_stage_id=stage_id, to_stage_id=entry.stage_id, action=entry.action,
        ).first()
        if exists is None:
            problems.append(f"Entry {entry.sequence} ({entry.action}) does not follow a known transition")
        stage_id = entry.stage_id

    replayed = db.session.get(WorkflowStage, stage_id) if stage_id else None
    if stage_id != po.current_stage_id:
        problems.append("Replayed stage does not match the current stage")

    return {
        "purchase_order_id": po.id,
        "current_stage": po.current_stage.code,
        "replayed_stage": replayed.code if replayed else None,
        "entries": len(entries),
        "consistent": not problems,
        "problems": problems,
    }


def list_purchase_orders(
    *,
    status: str | None = None,
    principal_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status.lower())
    if principal_id is not None:
        query = query.filter(PurchaseOrder.principal_id == principal_id)

    total = query.count()
    rows = query.order_by(PurchaseOrder.id.desc()).offset(max(offset, 0)).limit(max(limit, 1)).all()
    return rows, total
