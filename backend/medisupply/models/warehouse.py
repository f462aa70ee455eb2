from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class WarehouseApproval(db.Model):
    """
    Physical-storage acceptance of a QC-approved receipt.

    STATUS: pending -> in_progress -> submitted -> approved | rejected

    INVENTORY INTEGRATION: approval posts inventory for every line with
    approved_qty > 0. The outcome is tracked separately so a committed
    approval whose posting failed is visible and replayable:
        pending -> completed | failed (-> completed via reconcile)
    """
    __tablename__ = "warehouse_approvals"
    __table_args__ = (
        db.CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="ck_wa_terminal_markers_exclusive",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wa_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # One warehouse approval per QC record
    quality_control_id = db.Column(
        db.Integer, db.ForeignKey("quality_controls.id"), nullable=False, unique=True, index=True
    )
    invoice_receiving_id = db.Column(db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=False, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    overall_result = db.Column(db.String(24), nullable=False, default="pending")
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    remarks = db.Column(db.Text, nullable=True)
    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    inventory_integration_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    inventory_integration_error = db.Column(db.Text, nullable=True)
    inventory_integrated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    quality_control = db.relationship("QualityControl")
    invoice_receiving = db.relationship("InvoiceReceiving")
    purchase_order = db.relationship("PurchaseOrder")
    warehouse = db.relationship("Warehouse")
    products = db.relationship(
        "WarehouseApprovalProduct",
        backref="warehouse_approval",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WarehouseApprovalProduct.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wa_number": self.wa_number,
            "quality_control_id": self.quality_control_id,
            "invoice_receiving_id": self.invoice_receiving_id,
            "purchase_order_id": self.purchase_order_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "overall_result": self.overall_result,
            "assigned_to_user_id": self.assigned_to_user_id,
            "remarks": self.remarks,
            "submitted_by_user_id": self.submitted_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "inventory_integration_status": self.inventory_integration_status,
            "inventory_integration_error": self.inventory_integration_error,
            "inventory_integrated_at": to_utc_z(self.inventory_integrated_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "products": [p.to_dict() for p in self.products],
        }


class WarehouseApprovalProduct(db.Model):
    """
    One product line awaiting physical acceptance.

    INVARIANT: approved_qty + rejected_qty <= qc_passed_qty <= received_qty.
    """
    __tablename__ = "warehouse_approval_products"
    __table_args__ = (
        db.CheckConstraint("approved_qty >= 0 AND rejected_qty >= 0", name="ck_wa_line_qty_non_negative"),
        db.CheckConstraint("approved_qty + rejected_qty <= qc_passed_qty", name="ck_wa_line_qty_bound"),
        db.CheckConstraint("qc_passed_qty <= received_qty", name="ck_wa_line_passed_le_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_approval_id = db.Column(db.Integer, db.ForeignKey("warehouse_approvals.id"), nullable=False, index=True)
    qc_product_id = db.Column(db.Integer, db.ForeignKey("qc_products.id"), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)
    mfg_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    received_qty = db.Column(db.Integer, nullable=False)
    qc_passed_qty = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    approved_qty = db.Column(db.Integer, nullable=False, default=0)
    rejected_qty = db.Column(db.Integer, nullable=False, default=0)

    zone = db.Column(db.String(32), nullable=True)
    rack = db.Column(db.String(32), nullable=True)
    shelf = db.Column(db.String(32), nullable=True)
    bin = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="pending")
    rejection_reasons = db.Column(db.JSON, nullable=False, default=list)
    remarks = db.Column(db.Text, nullable=True)
    checked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")

    @property
    def has_location(self) -> bool:
        return bool(self.zone and self.rack)

    @property
    def location_label(self) -> str | None:
        parts = [p for p in (self.zone, self.rack, self.shelf, self.bin) if p]
        return "-".join(parts) if parts else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qc_product_id": self.qc_product_id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "mfg_date": to_iso_date(self.mfg_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "received_qty": self.received_qty,
            "qc_passed_qty": self.qc_passed_qty,
            "unit_cost_cents": self.unit_cost_cents,
            "approved_qty": self.approved_qty,
            "rejected_qty": self.rejected_qty,
            "storage_location": {
                "zone": self.zone,
                "rack": self.rack,
                "shelf": self.shelf,
                "bin": self.bin,
            },
            "status": self.status,
            "rejection_reasons": list(self.rejection_reasons or []),
            "remarks": self.remarks,
            "checked_by_user_id": self.checked_by_user_id,
            "checked_at": to_utc_z(self.checked_at),
        }
