from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class PurchaseOrder(db.Model):
    """
    Purchase order aggregate.

    LIFECYCLE: created in the initial workflow stage; afterwards mutated only
    through validated transitions (services/purchase_order_service.py).

    INVARIANT: `status` always equals `current_stage.code.lower()`. Both are
    written by the same conditional UPDATE and never diverge.

    History lives in WorkflowHistoryEntry (one row per transition, keyed by
    (purchase_order_id, sequence)) rather than in an embedded list.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    po_date = db.Column(db.Date, nullable=False)

    principal_id = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True, index=True)

    current_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    status = db.Column(db.String(64), nullable=False, index=True)

    # Totals in cents, recomputed from lines on every line change
    sub_total_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    current_stage = db.relationship("WorkflowStage")
    principal = db.relationship("Principal")
    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "po_date": to_iso_date(self.po_date),
            "principal_id": self.principal_id,
            "status": self.status,
            "current_stage": self.current_stage.code if self.current_stage else None,
            "current_stage_id": self.current_stage_id,
            "sub_total_cents": self.sub_total_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "grand_total_cents": self.grand_total_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        db.CheckConstraint("quantity > 0", name="ck_po_line_quantity_positive"),
        db.CheckConstraint("foc_quantity >= 0 AND foc_quantity <= quantity", name="ck_po_line_foc_range"),
        db.CheckConstraint("discount_type IN ('amount', 'percentage')", name="ck_po_line_discount_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    foc_quantity = db.Column(db.Integer, nullable=False, default=0)  # free of charge units
    unit_price_cents = db.Column(db.Integer, nullable=False)

    discount_type = db.Column(db.String(16), nullable=False, default="amount")
    # Cents when discount_type == "amount", percent when "percentage"
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    received_qty = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "foc_quantity": self.foc_quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value) if self.discount_value is not None else "0",
            "gst_percentage": str(self.gst_percentage) if self.gst_percentage is not None else "0",
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "received_qty": self.received_qty,
        }


class WorkflowHistoryEntry(db.Model):
    """
    Append-only workflow log for purchase orders.

    IMMUTABLE: rows are only ever inserted. `sequence` starts at 1 (the
    "create" entry) and increases by one per transition, so replaying the
    log in sequence order reproduces the order's current stage.
    """
    __tablename__ = "workflow_history"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "sequence", name="uq_workflow_history_sequence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    from_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False)
    action = db.Column(db.String(64), nullable=False)

    action_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    action_at = db.Column(db.DateTime(timezone=True), nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    payload = db.Column(db.Text, nullable=True)

    from_stage = db.relationship("WorkflowStage", foreign_keys=[from_stage_id])
    stage = db.relationship("WorkflowStage", foreign_keys=[stage_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "sequence": self.sequence,
            "from_stage": self.from_stage.code if self.from_stage else None,
            "stage": self.stage.code if self.stage else None,
            "action": self.action,
            "action_by_user_id": self.action_by_user_id,
            "action_at": to_utc_z(self.action_at),
            "remarks": self.remarks,
            "payload": json.loads(self.payload) if self.payload else None,
        }


class InvoiceReceiving(db.Model):
    """
    Supplier invoice received against a purchase order.

    Upstream collaborator of the QC ledger: QC records are created from
    these lines; the core only reads them afterwards.
    """
    __tablename__ = "invoice_receivings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    invoice_date = db.Column(db.Date, nullable=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("invoice_receivings", lazy=True))
    lines = db.relationship(
        "InvoiceReceivingLine",
        backref="invoice_receiving",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceReceivingLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "purchase_order_id": self.purchase_order_id,
            "po_number": self.purchase_order.po_number if self.purchase_order else None,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
            "notes": self.notes,
            "lines": [line.to_dict() for line in self.lines],
        }


class InvoiceReceivingLine(db.Model):
    __tablename__ = "invoice_receiving_lines"
    __table_args__ = (
        db.CheckConstraint("received_qty > 0", name="ck_invoice_line_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_receiving_id = db.Column(db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    received_qty = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    batch_number = db.Column(db.String(64), nullable=False)
    mfg_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "received_qty": self.received_qty,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "batch_number": self.batch_number,
            "mfg_date": to_iso_date(self.mfg_date),
            "expiry_date": to_iso_date(self.expiry_date),
        }
