from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Inventory(db.Model):
    """
    Stock-of-record for one (product, batch, warehouse) triple.

    QUANTITY INVARIANTS (CHECK constraints + conditional UPDATEs):
    - current_stock >= 0
    - 0 <= reserved_stock <= current_stock
    - available_stock = current_stock - reserved_stock (computed, never stored)
    - total_value_cents = current_stock * unit_cost_cents (computed, never stored)

    current_stock / reserved_stock are only written by
    repositories/inventory_repository.py, which appends a StockMovement or
    StockReservation row in the same transaction.

    Soft-deleted (is_active=False) rather than removed so the audit trail
    survives.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_no", "warehouse_id", name="uq_inventory_product_batch_warehouse"),
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_current_non_negative"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_non_negative"),
        db.CheckConstraint("reserved_stock <= current_stock", name="ck_inventory_reserved_le_current"),
        db.Index("ix_inventory_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_no = db.Column(db.String(64), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    maximum_stock = db.Column(db.Integer, nullable=True)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    # available | quarantine | expired | damaged
    stock_status = db.Column(db.String(16), nullable=False, default="available")

    # Storage location
    zone = db.Column(db.String(32), nullable=True)
    rack = db.Column(db.String(32), nullable=True)
    shelf = db.Column(db.String(32), nullable=True)
    bin = db.Column(db.String(32), nullable=True)

    mfg_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    # Upstream traceability (ids + number snapshots)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    po_number = db.Column(db.String(32), nullable=True)
    invoice_receiving_id = db.Column(db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=True)
    invoice_number = db.Column(db.String(64), nullable=True)
    quality_control_id = db.Column(db.Integer, db.ForeignKey("quality_controls.id"), nullable=True)
    qc_number = db.Column(db.String(32), nullable=True)
    warehouse_approval_id = db.Column(db.Integer, db.ForeignKey("warehouse_approvals.id"), nullable=True)
    wa_number = db.Column(db.String(32), nullable=True)
    # Set when this record was created by a transfer from another record
    source_inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")

    @hybrid_property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @hybrid_property
    def total_value_cents(self) -> int:
        return self.current_stock * self.unit_cost_cents

    @property
    def location_label(self) -> str | None:
        parts = [p for p in (self.zone, self.rack, self.shelf, self.bin) if p]
        return "-".join(parts) if parts else None

    @property
    def needs_reorder(self) -> bool:
        return self.available_stock <= self.minimum_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_no": self.batch_no,
            "warehouse_id": self.warehouse_id,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "minimum_stock": self.minimum_stock,
            "maximum_stock": self.maximum_stock,
            "reorder_level": self.reorder_level,
            "needs_reorder": self.needs_reorder,
            "unit_cost_cents": self.unit_cost_cents,
            "total_value_cents": self.total_value_cents,
            "stock_status": self.stock_status,
            "location": {
                "zone": self.zone,
                "rack": self.rack,
                "shelf": self.shelf,
                "bin": self.bin,
            },
            "mfg_date": to_iso_date(self.mfg_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "traceability": {
                "purchase_order_id": self.purchase_order_id,
                "po_number": self.po_number,
                "invoice_receiving_id": self.invoice_receiving_id,
                "invoice_number": self.invoice_number,
                "quality_control_id": self.quality_control_id,
                "qc_number": self.qc_number,
                "warehouse_approval_id": self.warehouse_approval_id,
                "wa_number": self.wa_number,
                "source_inventory_id": self.source_inventory_id,
            },
            "is_active": self.is_active,
            "deleted_at": to_utc_z(self.deleted_at),
            "deleted_by_user_id": self.deleted_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only log of every stock quantity change.

    quantity_delta is signed (+inward, -outward). reserved_delta is non-zero
    only for reservation-linked movements (fulfilment).
    idempotency_key is set for postings that may be replayed (warehouse
    approval lines) and is unique.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_inventory_occurred", "inventory_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False, index=True)

    # inward | outward | transfer | adjustment | return | expired | damaged | lost | utilization
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    reserved_delta = db.Column(db.Integer, nullable=False, default=0)

    # Resulting balances (for audit readability)
    balance_after = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)

    from_location = db.Column(db.String(128), nullable=True)
    to_location = db.Column(db.String(128), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_line_id = db.Column(db.Integer, nullable=True)
    # Shared by both legs of a transfer
    transfer_ref = db.Column(db.String(36), nullable=True, index=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    reason = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    inventory = db.relationship("Inventory", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "reserved_delta": self.reserved_delta,
            "balance_after": self.balance_after,
            "reserved_after": self.reserved_after,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_line_id": self.reference_line_id,
            "transfer_ref": self.transfer_ref,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockReservation(db.Model):
    """Hold against available stock: active -> fulfilled | cancelled."""
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.CheckConstraint("reserved_qty > 0", name="ck_reservation_qty_positive"),
        db.Index("ix_stock_reservations_inventory_status", "inventory_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False, index=True)
    reserved_qty = db.Column(db.Integer, nullable=False)
    reserved_for = db.Column(db.String(128), nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reserved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    close_reason = db.Column(db.String(255), nullable=True)

    inventory = db.relationship("Inventory", backref=db.backref("reservations", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "reserved_qty": self.reserved_qty,
            "reserved_for": self.reserved_for,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "reserved_by_user_id": self.reserved_by_user_id,
            "reserved_at": to_utc_z(self.reserved_at),
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
            "close_reason": self.close_reason,
        }


class UtilizationRecord(db.Model):
    """Terminal consumption of stock at a hospital (case / patient / doctor)."""
    __tablename__ = "utilization_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False, index=True)
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=False, unique=True)
    quantity = db.Column(db.Integer, nullable=False)

    hospital_ref = db.Column(db.String(64), nullable=False)
    case_ref = db.Column(db.String(64), nullable=True)
    patient_ref = db.Column(db.String(64), nullable=True)
    doctor_ref = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    utilized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    utilized_at = db.Column(db.DateTime(timezone=True), nullable=False)

    inventory = db.relationship("Inventory", backref=db.backref("utilizations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "stock_movement_id": self.stock_movement_id,
            "quantity": self.quantity,
            "hospital_ref": self.hospital_ref,
            "case_ref": self.case_ref,
            "patient_ref": self.patient_ref,
            "doctor_ref": self.doctor_ref,
            "reason": self.reason,
            "utilized_by_user_id": self.utilized_by_user_id,
            "utilized_at": to_utc_z(self.utilized_at),
        }
