# Overview: Service-layer operations for supplier invoices received against purchase orders.

"""
Invoice Receiving Service

Thin upstream collaborator of the QC ledger: records which batches arrived
on which invoice. QC records are created from these lines and only read
them afterwards.

RULES:
- The purchase order must be ordered or (partially) received
- Every product must appear on the purchase order
- invoice_number is globally unique
- Invoiced quantity per product never exceeds what the purchase order still
  has outstanding (ordered minus already invoiced)
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import Conflict, NotFound, NotReady, ValidationError
from ..extensions import db
from ..models import InvoiceReceiving, InvoiceReceivingLine, PurchaseOrder
from ..time_utils import utcnow
from ..validation import optional_date, positive_int, price_cents
from .audit_service import record_event

RECEIVABLE_STATUSES = frozenset({"ordered", "partial_received", "received"})


def get_invoice_receiving(invoice_id: int) -> InvoiceReceiving:
    invoice = db.session.get(InvoiceReceiving, invoice_id)
    if not invoice:
        raise NotFound(f"Invoice receiving {invoice_id} not found")
    return invoice


def outstanding_quantities(po: PurchaseOrder) -> dict[int, int]:
    """product_id -> ordered quantity not yet covered by an invoice receiving."""
    ordered: dict[int, int] = {}
    for line in po.lines:
        ordered[line.product_id] = ordered.get(line.product_id, 0) + line.quantity

    invoiced = dict(
        db.session.query(InvoiceReceivingLine.product_id, func.sum(InvoiceReceivingLine.received_qty))
        .join(InvoiceReceiving, InvoiceReceiving.id == InvoiceReceivingLine.invoice_receiving_id)
        .filter(InvoiceReceiving.purchase_order_id == po.id)
        .group_by(InvoiceReceivingLine.product_id)
        .all()
    )
    return {pid: qty - int(invoiced.get(pid) or 0) for pid, qty in ordered.items()}


def create_invoice_receiving(
    *,
    purchase_order_id: int,
    invoice_number: str,
    lines: list,
    actor,
    invoice_date=None,
    notes: str | None = None,
) -> InvoiceReceiving:
    if not invoice_number or not str(invoice_number).strip():
        raise ValidationError("invoice_number is required")
    invoice_number = str(invoice_number).strip()

    po = db.session.get(PurchaseOrder, purchase_order_id)
    if not po:
        raise NotFound(f"Purchase order {purchase_order_id} not found")
    if po.status not in RECEIVABLE_STATUSES:
        raise NotReady(f"Purchase order {po.po_number} is not awaiting goods (status: {po.status})")

    if db.session.query(InvoiceReceiving.id).filter_by(invoice_number=invoice_number).first():
        raise Conflict(f"Invoice {invoice_number} already recorded", invoice_number=invoice_number)

    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    po_lines = {line.product_id: line for line in po.lines}
    outstanding = outstanding_quantities(po)

    invoice = InvoiceReceiving(
        invoice_number=invoice_number,
        invoice_date=optional_date(invoice_date, "invoice_date"),
        purchase_order_id=po.id,
        received_by_user_id=actor.id,
        received_at=utcnow(),
        notes=notes,
    )

    for idx, raw in enumerate(lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        product_id = positive_int(raw.get("product_id"), f"lines[{idx}].product_id")
        po_line = po_lines.get(product_id)
        if po_line is None:
            raise ValidationError(f"Product {product_id} is not on purchase order {po.po_number}")

        batch = (raw.get("batch_number") or "").strip()
        if not batch:
            raise ValidationError(f"lines[{idx}].batch_number is required")

        mfg = optional_date(raw.get("mfg_date"), f"lines[{idx}].mfg_date")
        expiry = optional_date(raw.get("expiry_date"), f"lines[{idx}].expiry_date")
        if mfg and expiry and expiry <= mfg:
            raise ValidationError(f"lines[{idx}].expiry_date must be after mfg_date")

        received_qty = positive_int(raw.get("received_qty"), f"lines[{idx}].received_qty")
        if received_qty > outstanding[product_id]:
            raise ValidationError(
                f"lines[{idx}] invoices {received_qty} of product {product_id} but only "
                f"{outstanding[product_id]} remain outstanding on {po.po_number}",
                product_id=product_id, outstanding=outstanding[product_id],
            )
        outstanding[product_id] -= received_qty

        unit_price = raw.get("unit_price_cents")
        invoice.lines.append(InvoiceReceivingLine(
            product_id=product_id,
            received_qty=received_qty,
            unit=raw.get("unit") or (po_line.product.unit if po_line.product else None),
            unit_price_cents=(
                price_cents(unit_price, f"lines[{idx}].unit_price_cents")
                if unit_price is not None else po_line.unit_price_cents
            ),
            batch_number=batch,
            mfg_date=mfg,
            expiry_date=expiry,
        ))

    db.session.add(invoice)
    db.session.flush()

    record_event(resource="invoice_receiving", resource_id=invoice.id, action="create",
                 actor_user_id=actor.id, after={"invoice_number": invoice.invoice_number,
                                                "purchase_order_id": po.id,
                                                "lines": len(invoice.lines)})
    return invoice


def list_invoice_receivings(
    *,
    purchase_order_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InvoiceReceiving], int]:
    query = db.session.query(InvoiceReceiving)
    if purchase_order_id is not None:
        query = query.filter(InvoiceReceiving.purchase_order_id == purchase_order_id)
    total = query.count()
    rows = query.order_by(InvoiceReceiving.id.desc()).offset(max(offset, 0)).limit(max(limit, 1)).all()
    return rows, total
