# Overview: Service-layer operations for the inventory ledger; encapsulates business logic and database work.

"""
Inventory Ledger Invariants (authoritative)

Stock-of-record:
- One Inventory row per (product, batch, warehouse).
- current_stock / reserved_stock change only through
  repositories/inventory_repository.apply_change(), which runs a
  conditional UPDATE re-checking the invariants and appends the log row.
- available_stock and total_value_cents are computed, never stored.

Business invariants:
- available_stock = current_stock - reserved_stock >= 0 after every operation.
- remove / write-off / transfer-out / utilization never touch reserved units.
- Every quantity change appends a StockMovement; every hold appends a
  StockReservation (active -> fulfilled | cancelled).
- Both legs of a cross-warehouse transfer share one transfer_ref.
- Postings from warehouse approvals carry an idempotency_key, so replaying
  them is a no-op.

Soft delete:
- Records are deactivated, never removed; a record with reserved stock
  cannot be deactivated; inactive records reject all quantity changes.

Audit:
- Each operation appends an AuditEvent in the same DB transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import current_app

from ..domain import stock as rules
from ..errors import Conflict, NotFound, NotReady, ValidationError
from ..extensions import db
from ..models import (
    InvoiceReceiving,
    Inventory,
    Product,
    PurchaseOrder,
    QualityControl,
    StockMovement,
    StockReservation,
    UtilizationRecord,
    Warehouse,
    WarehouseApproval,
)
from ..repositories import inventory_repository as repo
from ..time_utils import parse_iso_datetime, today, utcnow
from ..validation import coerce_int, is_present, non_negative_int, one_of, positive_int, price_cents
from .audit_service import record_event

STOCK_STATUSES = frozenset({"available", "quarantine", "expired", "damaged"})
LOCATION_FIELDS = ("zone", "rack", "shelf", "bin")
TRACEABILITY_FIELDS = (
    "purchase_order_id",
    "po_number",
    "invoice_receiving_id",
    "invoice_number",
    "quality_control_id",
    "qc_number",
    "warehouse_approval_id",
    "wa_number",
)


def get_inventory(inventory_id: int) -> Inventory:
    inventory = db.session.get(Inventory, inventory_id)
    if not inventory:
        raise NotFound(f"Inventory record {inventory_id} not found")
    return inventory


def _snapshot(inventory: Inventory) -> dict:
    return {
        "current_stock": inventory.current_stock,
        "reserved_stock": inventory.reserved_stock,
        "available_stock": inventory.available_stock,
        "is_active": inventory.is_active,
    }


def _audit(inventory: Inventory, action: str, actor_id: int | None, before: dict, note: str | None = None):
    record_event(resource="inventory", resource_id=inventory.id, action=action,
                 actor_user_id=actor_id, before=before, after=_snapshot(inventory), note=note)


def _parse_location(raw: dict | None) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("location must be an object")
    unknown = set(raw) - set(LOCATION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown location fields: {', '.join(sorted(unknown))}")
    return {k: (str(v).strip() or None) if v is not None else None for k, v in raw.items()}


def _label(location: dict) -> str | None:
    parts = [location.get(f) for f in LOCATION_FIELDS if location.get(f)]
    return "-".join(parts) if parts else None


def _parse_expires_at(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        expires_at = value
    elif isinstance(value, str):
        try:
            expires_at = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError("expires_at must be an ISO-8601 datetime")
    else:
        raise ValidationError("expires_at must be an ISO-8601 datetime")
    if expires_at <= utcnow():
        raise ValidationError("expires_at must be in the future")
    return expires_at


# ---------------------------------------------------------------------------
# Posting from warehouse approvals
# ---------------------------------------------------------------------------

def post_inward(
    *,
    product_id: int,
    batch_no: str,
    warehouse_id: int,
    quantity: int,
    idempotency_key: str,
    unit_cost_cents: int = 0,
    location: dict | None = None,
    mfg_date=None,
    expiry_date=None,
    traceability: dict | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_line_id: int | None = None,
    actor_id: int | None = None,
) -> tuple[Inventory, StockMovement | None]:
    """
    Create or increment the (product, batch, warehouse) record.

    Returns (record, movement); movement is None when the idempotency key was
    already posted. A soft-deleted target record raises Conflict.
    """
    if repo.movement_exists(idempotency_key):
        return repo.find_record(product_id, batch_no, warehouse_id), None

    location = location or {}
    defaults = {
        "unit_cost_cents": unit_cost_cents,
        "mfg_date": mfg_date,
        "expiry_date": expiry_date,
        "created_by_user_id": actor_id,
        **{f: location.get(f) for f in LOCATION_FIELDS},
        **(traceability or {}),
    }
    inventory, created = repo.get_or_create_record(
        product_id=product_id, batch_no=batch_no, warehouse_id=warehouse_id, defaults=defaults,
    )
    if not inventory.is_active:
        raise Conflict(
            f"Inventory record {inventory.id} for batch {batch_no} is deactivated",
            inventory_id=inventory.id,
        )
    if not created and not inventory.unit_cost_cents and unit_cost_cents:
        inventory.unit_cost_cents = unit_cost_cents

    before = _snapshot(inventory)
    change = rules.add_stock(repo.snapshot_of(inventory), quantity, movement_type="inward")
    movement = repo.apply_change(
        inventory, change,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line_id=reference_line_id,
        idempotency_key=idempotency_key,
        to_location=_label(location),
        actor_user_id=actor_id,
    )
    _audit(inventory, "inward", actor_id, before, note=idempotency_key)
    return inventory, movement


def create_inventory(
    *,
    product_id: int,
    batch_no: str,
    warehouse_id: int,
    actor,
    quantity: int = 0,
    unit_cost_cents: int = 0,
    location: dict | None = None,
    mfg_date=None,
    expiry_date=None,
    minimum_stock: int = 0,
    reorder_level: int = 0,
    maximum_stock: int | None = None,
) -> Inventory:
    """Open a record directly (opening balances); normal receipts come from warehouse approvals."""
    if db.session.get(Product, product_id) is None:
        raise NotFound(f"Product {product_id} not found")
    if db.session.get(Warehouse, warehouse_id) is None:
        raise NotFound(f"Warehouse {warehouse_id} not found")
    if not batch_no or not str(batch_no).strip():
        raise ValidationError("batch_no is required")
    batch_no = str(batch_no).strip()
    if repo.find_record(product_id, batch_no, warehouse_id) is not None:
        raise Conflict("Inventory record already exists for this product, batch and warehouse")

    location = _parse_location(location)
    inventory, _ = repo.get_or_create_record(
        product_id=product_id,
        batch_no=batch_no,
        warehouse_id=warehouse_id,
        defaults={
            "unit_cost_cents": price_cents(unit_cost_cents, "unit_cost_cents"),
            "mfg_date": mfg_date,
            "expiry_date": expiry_date,
            "minimum_stock": non_negative_int(minimum_stock, "minimum_stock"),
            "reorder_level": non_negative_int(reorder_level, "reorder_level"),
            "maximum_stock": non_negative_int(maximum_stock, "maximum_stock") if maximum_stock is not None else None,
            "created_by_user_id": actor.id,
            **location,
        },
    )
    before = _snapshot(inventory)
    if quantity:
        change = rules.add_stock(repo.snapshot_of(inventory), positive_int(quantity, "quantity"))
        repo.apply_change(inventory, change, reason="Opening balance", actor_user_id=actor.id,
                          to_location=_label(location))
    _audit(inventory, "create", actor.id, before)
    return inventory


# ---------------------------------------------------------------------------
# Quantity operations
# ---------------------------------------------------------------------------

def _apply(inventory: Inventory, change, action: str, actor_id: int | None, *, note: str | None = None, **meta):
    before = _snapshot(inventory)
    movement = repo.apply_change(inventory, change, reason=note, actor_user_id=actor_id, **meta)
    _audit(inventory, action, actor_id, before, note=note)
    current_app.logger.info(
        "Inventory %s %s: current %s -> %s, reserved %s -> %s",
        inventory.id, action, before["current_stock"], inventory.current_stock,
        before["reserved_stock"], inventory.reserved_stock,
    )
    return movement


def add_stock(
    inventory_id: int,
    *,
    quantity: int,
    actor,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    inventory = get_inventory(inventory_id)
    change = rules.add_stock(repo.snapshot_of(inventory), positive_int(quantity, "quantity"))
    return _apply(inventory, change, "add_stock", actor.id, note=reason,
                  reference_type=reference_type, reference_id=reference_id)


def remove_stock(
    inventory_id: int,
    *,
    quantity: int,
    actor,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    inventory = get_inventory(inventory_id)
    change = rules.remove_stock(repo.snapshot_of(inventory), positive_int(quantity, "quantity"))
    return _apply(inventory, change, "remove_stock", actor.id, note=reason,
                  reference_type=reference_type, reference_id=reference_id)


def adjust_stock(inventory_id: int, *, delta: int, reason: str, actor) -> StockMovement:
    """Signed stock-count correction; a reason is mandatory."""
    if not is_present(reason):
        raise ValidationError("An adjustment reason is required")
    inventory = get_inventory(inventory_id)
    change = rules.adjust_stock(repo.snapshot_of(inventory), coerce_int(delta, "delta"))
    return _apply(inventory, change, "adjust_stock", actor.id, note=reason)


def write_off_stock(
    inventory_id: int,
    *,
    quantity: int,
    write_off_type: str,
    actor,
    reason: str | None = None,
) -> StockMovement:
    inventory = get_inventory(inventory_id)
    change = rules.write_off_stock(
        repo.snapshot_of(inventory), positive_int(quantity, "quantity"), write_off_type,
    )
    return _apply(inventory, change, f"write_off_{write_off_type}", actor.id, note=reason)


def return_stock(
    inventory_id: int,
    *,
    quantity: int,
    actor,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    inventory = get_inventory(inventory_id)
    change = rules.return_stock(repo.snapshot_of(inventory), positive_int(quantity, "quantity"))
    return _apply(inventory, change, "return_stock", actor.id, note=reason,
                  reference_type=reference_type, reference_id=reference_id)


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------

def _get_reservation(inventory: Inventory, reservation_id: int) -> StockReservation:
    reservation = db.session.get(StockReservation, reservation_id)
    if not reservation or reservation.inventory_id != inventory.id:
        raise NotFound(f"Reservation {reservation_id} not found on inventory {inventory.id}")
    return reservation


def reserve_stock(
    inventory_id: int,
    *,
    quantity: int,
    reserved_for: str,
    actor,
    expires_at=None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockReservation:
    if not is_present(reserved_for):
        raise ValidationError("reserved_for is required")
    expires_at = _parse_expires_at(expires_at)

    inventory = get_inventory(inventory_id)
    quantity = positive_int(quantity, "quantity")
    change = rules.reserve_stock(repo.snapshot_of(inventory), quantity)
    _apply(inventory, change, "reserve", actor.id, note=reserved_for)

    reservation = StockReservation(
        inventory_id=inventory.id,
        reserved_qty=quantity,
        reserved_for=reserved_for.strip(),
        reference_type=reference_type,
        reference_id=reference_id,
        status="active",
        expires_at=expires_at,
        reserved_by_user_id=actor.id,
        reserved_at=utcnow(),
    )
    db.session.add(reservation)
    db.session.flush()
    return reservation


def _close_reservation(reservation: StockReservation, status: str, actor_id: int | None, reason: str | None):
    reservation.status = status
    reservation.closed_by_user_id = actor_id
    reservation.closed_at = utcnow()
    reservation.close_reason = reason[:255] if reason else None


def release_reservation(
    inventory_id: int,
    reservation_id: int,
    *,
    actor,
    reason: str | None = None,
) -> StockReservation:
    inventory = get_inventory(inventory_id)
    reservation = _get_reservation(inventory, reservation_id)
    if reservation.status != "active":
        raise NotReady(f"Reservation {reservation.id} is {reservation.status}")

    change = rules.release_reservation(repo.snapshot_of(inventory), reservation.reserved_qty)
    _apply(inventory, change, "release", actor.id if actor else None, note=reason)
    _close_reservation(reservation, "cancelled", actor.id if actor else None, reason)
    db.session.flush()
    return reservation


def fulfill_reservation(
    inventory_id: int,
    reservation_id: int,
    *,
    actor,
    reason: str | None = None,
) -> StockMovement:
    """Consume a reservation: reserved and current stock both drop."""
    inventory = get_inventory(inventory_id)
    reservation = _get_reservation(inventory, reservation_id)
    if reservation.status != "active":
        raise NotReady(f"Reservation {reservation.id} is {reservation.status}")

    change = rules.fulfill_reservation(repo.snapshot_of(inventory), reservation.reserved_qty)
    movement = _apply(inventory, change, "fulfill", actor.id, note=reason or reservation.reserved_for,
                      reference_type="reservation", reference_id=reservation.id)
    _close_reservation(reservation, "fulfilled", actor.id, reason)
    db.session.flush()
    return movement


def expire_reservations(now: datetime | None = None) -> int:
    """Cancel every active reservation past its expiry. Returns how many."""
    now = now or utcnow()
    expired = (
        db.session.query(StockReservation)
        .filter(
            StockReservation.status == "active",
            StockReservation.expires_at.isnot(None),
            StockReservation.expires_at <= now,
        )
        .order_by(StockReservation.id)
        .all()
    )
    for reservation in expired:
        inventory = get_inventory(reservation.inventory_id)
        change = rules.release_reservation(repo.snapshot_of(inventory), reservation.reserved_qty)
        _apply(inventory, change, "release", None, note="expired")
        _close_reservation(reservation, "cancelled", None, "expired")
    db.session.flush()
    return len(expired)


# ---------------------------------------------------------------------------
# Transfers and utilization
# ---------------------------------------------------------------------------

def transfer_stock(
    inventory_id: int,
    *,
    quantity: int,
    actor,
    to_warehouse_id: int | None = None,
    to_location: dict | None = None,
    reason: str | None = None,
) -> dict:
    """
    Move stock to another warehouse, or relocate within the same one.

    Cross-warehouse: the source loses `quantity` (remove rules) and the
    destination (product, batch, to_warehouse) record, created if needed,
    gains it. Both legs are `transfer` movements sharing a transfer_ref.

    Same warehouse: the whole record moves to `to_location`; one
    zero-quantity `transfer` movement records the relocation.
    """
    source = get_inventory(inventory_id)
    quantity = positive_int(quantity, "quantity")
    location = _parse_location(to_location)
    transfer_ref = str(uuid.uuid4())

    target_warehouse_id = (
        coerce_int(to_warehouse_id, "to_warehouse_id") if to_warehouse_id is not None else source.warehouse_id
    )

    if target_warehouse_id == source.warehouse_id:
        if not location:
            raise ValidationError("Provide to_warehouse_id or a new to_location")
        if not source.is_active:
            raise NotReady("Inventory record is inactive")
        if quantity != source.current_stock:
            raise ValidationError("Relocation within a warehouse moves the whole record; quantity must equal current stock")

        from_label = source.location_label
        for field, value in location.items():
            setattr(source, field, value)
        change = rules.StockChange(
            before=repo.snapshot_of(source), after=repo.snapshot_of(source),
            quantity_delta=0, reserved_delta=0, movement_type="transfer",
        )
        movement = _apply(source, change, "relocate", actor.id, note=reason,
                          transfer_ref=transfer_ref, from_location=from_label, to_location=source.location_label)
        return {"transfer_ref": transfer_ref, "source": source, "destination": source, "movements": [movement]}

    if db.session.get(Warehouse, target_warehouse_id) is None:
        raise NotFound(f"Warehouse {target_warehouse_id} not found")

    out_change = rules.remove_stock(repo.snapshot_of(source), quantity, movement_type="transfer")

    defaults = {
        "unit_cost_cents": source.unit_cost_cents,
        "mfg_date": source.mfg_date,
        "expiry_date": source.expiry_date,
        "minimum_stock": source.minimum_stock,
        "reorder_level": source.reorder_level,
        "stock_status": source.stock_status,
        "source_inventory_id": source.id,
        "created_by_user_id": actor.id,
        **{f: getattr(source, f) for f in TRACEABILITY_FIELDS},
        **location,
    }
    destination, _ = repo.get_or_create_record(
        product_id=source.product_id,
        batch_no=source.batch_no,
        warehouse_id=target_warehouse_id,
        defaults=defaults,
    )
    if not destination.is_active:
        raise Conflict(f"Destination inventory record {destination.id} is deactivated",
                       inventory_id=destination.id)

    to_label = _label(location) or destination.location_label
    out_movement = _apply(source, out_change, "transfer_out", actor.id, note=reason,
                          transfer_ref=transfer_ref, reference_type="inventory",
                          reference_id=destination.id, from_location=source.location_label, to_location=to_label)

    in_change = rules.add_stock(repo.snapshot_of(destination), quantity, movement_type="transfer")
    in_movement = _apply(destination, in_change, "transfer_in", actor.id, note=reason,
                         transfer_ref=transfer_ref, reference_type="inventory",
                         reference_id=source.id, from_location=source.location_label, to_location=to_label)

    return {
        "transfer_ref": transfer_ref,
        "source": source,
        "destination": destination,
        "movements": [out_movement, in_movement],
    }


def record_utilization(
    inventory_id: int,
    *,
    quantity: int,
    hospital_ref: str,
    actor,
    case_ref: str | None = None,
    patient_ref: str | None = None,
    doctor_ref: str | None = None,
    reason: str | None = None,
) -> UtilizationRecord:
    """Terminal consumption at a hospital; decrements stock with remove rules."""
    if not is_present(hospital_ref):
        raise ValidationError("hospital_ref is required")

    inventory = get_inventory(inventory_id)
    quantity = positive_int(quantity, "quantity")
    change = rules.remove_stock(repo.snapshot_of(inventory), quantity, movement_type="utilization")
    movement = _apply(inventory, change, "utilization", actor.id, note=reason,
                      reference_type="hospital", from_location=inventory.location_label)

    record = UtilizationRecord(
        inventory_id=inventory.id,
        stock_movement_id=movement.id,
        quantity=quantity,
        hospital_ref=hospital_ref.strip(),
        case_ref=case_ref,
        patient_ref=patient_ref,
        doctor_ref=doctor_ref,
        reason=reason[:255] if reason else None,
        utilized_by_user_id=actor.id,
        utilized_at=movement.occurred_at,
    )
    db.session.add(record)
    db.session.flush()
    return record


# ---------------------------------------------------------------------------
# Settings, soft delete
# ---------------------------------------------------------------------------

SETTINGS_FIELDS = frozenset({"minimum_stock", "maximum_stock", "reorder_level", "unit_cost_cents", "stock_status"})


def _settings_values(inventory: Inventory, changes: dict) -> dict:
    """Validate a settings change set against the record; returns attribute -> value."""
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")
    unknown = set(changes) - SETTINGS_FIELDS - {"location"}
    if unknown:
        raise ValidationError(f"Fields cannot be updated here: {', '.join(sorted(unknown))}")

    values = {}
    if "minimum_stock" in changes:
        values["minimum_stock"] = non_negative_int(changes["minimum_stock"], "minimum_stock")
    if "reorder_level" in changes:
        values["reorder_level"] = non_negative_int(changes["reorder_level"], "reorder_level")
    if "maximum_stock" in changes:
        value = changes["maximum_stock"]
        values["maximum_stock"] = non_negative_int(value, "maximum_stock") if value is not None else None
    if "unit_cost_cents" in changes:
        values["unit_cost_cents"] = price_cents(changes["unit_cost_cents"], "unit_cost_cents")
    if "stock_status" in changes:
        values["stock_status"] = one_of(changes["stock_status"], "stock_status", STOCK_STATUSES)
    if "location" in changes:
        values.update(_parse_location(changes["location"]))

    minimum = values.get("minimum_stock", inventory.minimum_stock)
    maximum = values.get("maximum_stock", inventory.maximum_stock)
    if maximum is not None and maximum < minimum:
        raise ValidationError("maximum_stock cannot be below minimum_stock")
    return values


def update_settings(inventory_id: int, *, actor, changes: dict) -> Inventory:
    """Update thresholds, unit cost, stock status and location. Never quantities."""
    inventory = get_inventory(inventory_id)
    values = _settings_values(inventory, changes)

    before = {f: getattr(inventory, f) for f in SETTINGS_FIELDS}
    for field, value in values.items():
        setattr(inventory, field, value)
    db.session.flush()
    record_event(resource="inventory", resource_id=inventory.id, action="update_settings",
                 actor_user_id=actor.id, before=before,
                 after={f: getattr(inventory, f) for f in SETTINGS_FIELDS})
    return inventory


BULK_SETTINGS_FIELDS = frozenset({"minimum_stock", "maximum_stock", "reorder_level", "location"})


def bulk_update_settings(inventory_ids: list, *, actor, changes: dict) -> dict:
    """
    Apply one thresholds / location change set to many active records.

    All-or-nothing: every record is validated before any is written.
    Inactive or unknown ids are returned under "skipped".
    """
    if not isinstance(inventory_ids, list) or not inventory_ids:
        raise ValidationError("inventory_ids must be a non-empty list")
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")
    not_bulk = set(changes) - BULK_SETTINGS_FIELDS
    if not_bulk:
        raise ValidationError(f"Fields cannot be bulk updated: {', '.join(sorted(not_bulk))}")
    ids = list(dict.fromkeys(coerce_int(v, f"inventory_ids[{i}]") for i, v in enumerate(inventory_ids)))

    rows = (
        db.session.query(Inventory)
        .filter(Inventory.id.in_(ids), Inventory.is_active.is_(True))
        .order_by(Inventory.id)
        .all()
    )
    planned = [(inventory, _settings_values(inventory, changes)) for inventory in rows]

    for inventory, values in planned:
        before = {f: getattr(inventory, f) for f in SETTINGS_FIELDS}
        for field, value in values.items():
            setattr(inventory, field, value)
        record_event(resource="inventory", resource_id=inventory.id, action="update_settings",
                     actor_user_id=actor.id, before=before,
                     after={f: getattr(inventory, f) for f in SETTINGS_FIELDS}, note="bulk")
    db.session.flush()

    updated = [inventory.id for inventory in rows]
    current_app.logger.info("Bulk settings update on %s inventory record(s) by user %s", len(updated), actor.id)
    return {"updated": updated, "skipped": [i for i in ids if i not in updated]}


def soft_delete(inventory_id: int, *, actor) -> Inventory:
    inventory = get_inventory(inventory_id)
    if not inventory.is_active:
        return inventory
    if inventory.reserved_stock:
        raise NotReady("Release all reservations before deactivating this record",
                       reserved_stock=inventory.reserved_stock)

    before = _snapshot(inventory)
    inventory.is_active = False
    inventory.deleted_at = utcnow()
    inventory.deleted_by_user_id = actor.id
    db.session.flush()
    _audit(inventory, "deactivate", actor.id, before)
    return inventory


def restore(inventory_id: int, *, actor) -> Inventory:
    inventory = get_inventory(inventory_id)
    if inventory.is_active:
        return inventory
    before = _snapshot(inventory)
    inventory.is_active = True
    inventory.deleted_at = None
    inventory.deleted_by_user_id = None
    db.session.flush()
    _audit(inventory, "restore", actor.id, before)
    return inventory


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_inventory(
    *,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    batch_no: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Inventory], int]:
    query = db.session.query(Inventory)
    if not include_inactive:
        query = query.filter(Inventory.is_active.is_(True))
    if product_id is not None:
        query = query.filter(Inventory.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(Inventory.warehouse_id == warehouse_id)
    if batch_no:
        query = query.filter(Inventory.batch_no == batch_no)
    total = query.count()
    rows = query.order_by(Inventory.id).offset(max(offset, 0)).limit(max(limit, 1)).all()
    return rows, total


def list_movements(inventory_id: int, *, movement_type: str | None = None, limit: int = 100) -> list[StockMovement]:
    inventory = get_inventory(inventory_id)
    query = inventory.movements
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    return query.order_by(StockMovement.id.desc()).limit(max(limit, 1)).all()


def list_reservations(inventory_id: int, *, status: str | None = None) -> list[StockReservation]:
    inventory = get_inventory(inventory_id)
    query = inventory.reservations
    if status:
        query = query.filter(StockReservation.status == status)
    return query.order_by(StockReservation.id).all()


def product_journey(inventory_id: int) -> dict:
    """
    Upstream and downstream traceability of one record.

    PO -> invoice -> QC -> warehouse approval -> this record (and the
    records it was transferred from) -> movements, reservations and
    hospital utilizations.
    """
    inventory = get_inventory(inventory_id)

    chain = []
    seen = {inventory.id}
    parent_id = inventory.source_inventory_id
    while parent_id and parent_id not in seen:
        parent = db.session.get(Inventory, parent_id)
        if parent is None:
            break
        chain.append({"id": parent.id, "warehouse_id": parent.warehouse_id, "batch_no": parent.batch_no})
        seen.add(parent.id)
        parent_id = parent.source_inventory_id

    def _doc(model, doc_id, number_attr):
        if not doc_id:
            return None
        doc = db.session.get(model, doc_id)
        if doc is None:
            return None
        return {"id": doc.id, "number": getattr(doc, number_attr), "status": getattr(doc, "status", None)}

    movements = inventory.movements.order_by(StockMovement.id).all()
    return {
        "inventory": inventory.to_dict(),
        "purchase_order": _doc(PurchaseOrder, inventory.purchase_order_id, "po_number"),
        "invoice_receiving": _doc(InvoiceReceiving, inventory.invoice_receiving_id, "invoice_number"),
        "quality_control": _doc(QualityControl, inventory.quality_control_id, "qc_number"),
        "warehouse_approval": _doc(WarehouseApproval, inventory.warehouse_approval_id, "wa_number"),
        "transferred_from": chain,
        "movements": [m.to_dict() for m in movements],
        "reservations": [r.to_dict() for r in inventory.reservations.order_by(StockReservation.id).all()],
        "utilizations": [u.to_dict() for u in inventory.utilizations],
    }


def stock_alerts(*, warehouse_id: int | None = None, as_of=None) -> dict:
    """Low stock, out of stock, near expiry (NEAR_EXPIRY_DAYS) and expired records."""
    as_of = as_of or today()
    horizon = as_of + timedelta(days=current_app.config.get("NEAR_EXPIRY_DAYS", 30))

    query = db.session.query(Inventory).filter(Inventory.is_active.is_(True))
    if warehouse_id is not None:
        query = query.filter(Inventory.warehouse_id == warehouse_id)
    rows = query.order_by(Inventory.id).all()

    alerts = {"out_of_stock": [], "low_stock": [], "near_expiry": [], "expired": []}
    for inv in rows:
        brief = {
            "id": inv.id,
            "product_id": inv.product_id,
            "batch_no": inv.batch_no,
            "warehouse_id": inv.warehouse_id,
            "available_stock": inv.available_stock,
            "minimum_stock": inv.minimum_stock,
            "reorder_level": inv.reorder_level,
            "expiry_date": inv.expiry_date.isoformat() if inv.expiry_date else None,
        }
        if inv.current_stock == 0:
            alerts["out_of_stock"].append(brief)
        elif inv.needs_reorder or inv.available_stock <= inv.reorder_level:
            alerts["low_stock"].append(brief)

        if inv.expiry_date and inv.current_stock > 0:
            if inv.expiry_date <= as_of:
                alerts["expired"].append(brief)
            elif inv.expiry_date <= horizon:
                alerts["near_expiry"].append(brief)
    return alerts


def valuation_summary(*, warehouse_id: int | None = None) -> dict:
    """Units and value (cents) per warehouse over active records."""
    query = (
        db.session.query(
            Inventory.warehouse_id,
            db.func.count(Inventory.id),
            db.func.coalesce(db.func.sum(Inventory.current_stock), 0),
            db.func.coalesce(db.func.sum(Inventory.reserved_stock), 0),
            db.func.coalesce(db.func.sum(Inventory.current_stock * Inventory.unit_cost_cents), 0),
        )
        .filter(Inventory.is_active.is_(True))
        .group_by(Inventory.warehouse_id)
    )
    if warehouse_id is not None:
        query = query.filter(Inventory.warehouse_id == warehouse_id)

    warehouses = [
        {
            "warehouse_id": wid,
            "records": int(records),
            "current_stock": int(current),
            "reserved_stock": int(reserved),
            "available_stock": int(current) - int(reserved),
            "total_value_cents": int(value),
        }
        for wid, records, current, reserved, value in query.all()
    ]
    return {
        "warehouses": warehouses,
        "total_value_cents": sum(w["total_value_cents"] for w in warehouses),
        "total_units": sum(w["current_stock"] for w in warehouses),
    }


def inventory_statistics(*, warehouse_id: int | None = None, as_of=None) -> dict:
    """Totals, a per-stock-status breakdown and alert counts over active records."""
    query = (
        db.session.query(
            Inventory.stock_status,
            db.func.count(Inventory.id),
            db.func.coalesce(db.func.sum(Inventory.current_stock), 0),
            db.func.coalesce(db.func.sum(Inventory.current_stock * Inventory.unit_cost_cents), 0),
        )
        .filter(Inventory.is_active.is_(True))
        .group_by(Inventory.stock_status)
    )
    if warehouse_id is not None:
        query = query.filter(Inventory.warehouse_id == warehouse_id)

    by_status = {
        status: {"records": int(records), "units": int(units), "total_value_cents": int(value)}
        for status, records, units, value in query.all()
    }
    alerts = stock_alerts(warehouse_id=warehouse_id, as_of=as_of)
    return {
        "records": sum(s["records"] for s in by_status.values()),
        "total_units": sum(s["units"] for s in by_status.values()),
        "total_value_cents": sum(s["total_value_cents"] for s in by_status.values()),
        "by_stock_status": by_status,
        "alerts": {kind: len(rows) for kind, rows in alerts.items()},
    }
