from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class QualityControl(db.Model):
    """
    Inspection ledger for one invoice receiving.

    STATUS: pending -> in_progress -> submitted -> approved | rejected

    Terminal markers approved_by/at and rejected_by/at are mutually
    exclusive (enforced by CHECK constraint as well as the service).
    """
    __tablename__ = "quality_controls"
    __table_args__ = (
        db.CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="ck_qc_terminal_markers_exclusive",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    qc_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # One QC per invoice receiving
    invoice_receiving_id = db.Column(
        db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=False, unique=True, index=True
    )
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    qc_type = db.Column(db.String(32), nullable=False, default="standard")
    priority = db.Column(db.String(16), nullable=False, default="medium")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    overall_result = db.Column(db.String(16), nullable=False, default="pending")

    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Inspection environment
    temperature_c = db.Column(db.Numeric(5, 2), nullable=True)
    humidity_pct = db.Column(db.Numeric(5, 2), nullable=True)
    light_condition = db.Column(db.String(16), nullable=True)

    qc_remarks = db.Column(db.Text, nullable=True)
    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_remarks = db.Column(db.Text, nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    invoice_receiving = db.relationship("InvoiceReceiving")
    purchase_order = db.relationship("PurchaseOrder")
    products = db.relationship(
        "QCProduct",
        backref="quality_control",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QCProduct.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        return {
            "id": self.id,
            "qc_number": self.qc_number,
            "invoice_receiving_id": self.invoice_receiving_id,
            "purchase_order_id": self.purchase_order_id,
            "qc_type": self.qc_type,
            "priority": self.priority,
            "status": self.status,
            "overall_result": self.overall_result,
            "assigned_to_user_id": self.assigned_to_user_id,
            "environment": {
                "temperature_c": str(self.temperature_c) if self.temperature_c is not None else None,
                "humidity_pct": str(self.humidity_pct) if self.humidity_pct is not None else None,
                "light_condition": self.light_condition,
            },
            "qc_remarks": self.qc_remarks,
            "submitted_by_user_id": self.submitted_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "approval_remarks": self.approval_remarks,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "products": [p.to_dict(include_items=include_items) for p in self.products],
        }


class QCProduct(db.Model):
    """One inspected product line; `qc_result` is derived from its items."""
    __tablename__ = "qc_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quality_control_id = db.Column(db.Integer, db.ForeignKey("quality_controls.id"), nullable=False, index=True)
    invoice_line_id = db.Column(db.Integer, db.ForeignKey("invoice_receiving_lines.id"), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    received_qty = db.Column(db.Integer, nullable=False)
    batch_number = db.Column(db.String(64), nullable=False)
    mfg_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    qc_result = db.Column(db.String(16), nullable=False, default="pending")
    passed_qty = db.Column(db.Integer, nullable=False, default=0)
    failed_qty = db.Column(db.Integer, nullable=False, default=0)
    # reason code -> quantity affected
    qc_summary = db.Column(db.JSON, nullable=False, default=dict)

    product = db.relationship("Product")
    items = db.relationship(
        "QCItem",
        backref="qc_product",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QCItem.item_number",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "invoice_line_id": self.invoice_line_id,
            "received_qty": self.received_qty,
            "batch_number": self.batch_number,
            "mfg_date": to_iso_date(self.mfg_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "unit_price_cents": self.unit_price_cents,
            "qc_result": self.qc_result,
            "passed_qty": self.passed_qty,
            "failed_qty": self.failed_qty,
            "qc_summary": dict(self.qc_summary or {}),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QCItem(db.Model):
    """A single unit, or a sub-batch of `quantity` units, under inspection."""
    __tablename__ = "qc_items"
    __table_args__ = (
        db.UniqueConstraint("qc_product_id", "item_number", name="uq_qc_item_number"),
        db.CheckConstraint("quantity > 0", name="ck_qc_item_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    qc_product_id = db.Column(db.Integer, db.ForeignKey("qc_products.id"), nullable=False, index=True)
    item_number = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default="pending")
    reasons = db.Column(db.JSON, nullable=False, default=list)
    remarks = db.Column(db.Text, nullable=True)

    inspected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_number": self.item_number,
            "quantity": self.quantity,
            "status": self.status,
            "reasons": list(self.reasons or []),
            "remarks": self.remarks,
            "inspected_by_user_id": self.inspected_by_user_id,
            "inspected_at": to_utc_z(self.inspected_at),
        }
