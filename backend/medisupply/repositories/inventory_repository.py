# Overview: Atomic conditional writes for inventory quantities and their movement log.

"""
Inventory repository

WHY: Two concurrent requests must never both pass an "available >= qty"
check against stale data. Quantities are therefore changed only through a
single conditional UPDATE whose WHERE clause re-asserts the invariants:

    UPDATE inventory
       SET current_stock = current_stock + :dc,
           reserved_stock = reserved_stock + :dr
     WHERE id = :id AND is_active
       AND current_stock + :dc >= reserved_stock + :dr
       AND reserved_stock + :dr >= 0

rowcount == 0 means the guard failed at write time; the row is re-read and
the matching DomainError raised. The movement row is appended in the same
transaction. Nothing here commits.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..domain.stock import StockChange, StockSnapshot
from ..errors import Conflict, InsufficientStock, NotReady
from ..extensions import db
from ..models import Inventory, StockMovement
from ..time_utils import utcnow


def snapshot_of(inventory: Inventory) -> StockSnapshot:
    return StockSnapshot(
        current=inventory.current_stock,
        reserved=inventory.reserved_stock,
        is_active=inventory.is_active,
    )


def find_record(product_id: int, batch_no: str, warehouse_id: int) -> Inventory | None:
    return db.session.query(Inventory).filter_by(
        product_id=product_id,
        batch_no=batch_no,
        warehouse_id=warehouse_id,
    ).first()


def get_or_create_record(
    *,
    product_id: int,
    batch_no: str,
    warehouse_id: int,
    defaults: dict | None = None,
) -> tuple[Inventory, bool]:
    """
    Return the (product, batch, warehouse) record, creating it empty if absent.

    A soft-deleted record is returned as-is; callers decide whether that is a
    Conflict. Concurrent creators race on the unique constraint; the loser
    re-reads the winner's row.
    """
    existing = find_record(product_id, batch_no, warehouse_id)
    if existing is not None:
        return existing, False

    record = Inventory(
        product_id=product_id,
        batch_no=batch_no,
        warehouse_id=warehouse_id,
        current_stock=0,
        reserved_stock=0,
        **(defaults or {}),
    )
    try:
        with db.session.begin_nested():
            db.session.add(record)
        return record, True
    except IntegrityError:
        existing = find_record(product_id, batch_no, warehouse_id)
        if existing is None:
            raise Conflict(
                "Could not create inventory record",
                product_id=product_id, batch_no=batch_no, warehouse_id=warehouse_id,
            )
        return existing, False


def movement_exists(idempotency_key: str) -> bool:
    return db.session.query(
        db.session.query(StockMovement.id).filter_by(idempotency_key=idempotency_key).exists()
    ).scalar()


def apply_change(
    inventory: Inventory,
    change: StockChange,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_line_id: int | None = None,
    transfer_ref: str | None = None,
    idempotency_key: str | None = None,
    from_location: str | None = None,
    to_location: str | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement | None:
    """
    Persist a StockChange produced by domain/stock.py.

    Returns the appended StockMovement, or None for reservation-only changes.
    """
    dc = change.quantity_delta
    dr = change.reserved_delta

    # Pending attribute changes must reach the row before the refresh below
    db.session.flush()

    stmt = (
        update(Inventory)
        .where(
            Inventory.id == inventory.id,
            Inventory.is_active.is_(True),
            Inventory.current_stock + dc >= Inventory.reserved_stock + dr,
            Inventory.reserved_stock + dr >= 0,
        )
        .values(
            current_stock=Inventory.current_stock + dc,
            reserved_stock=Inventory.reserved_stock + dr,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.refresh(inventory)

    if result.rowcount == 0:
        if not inventory.is_active:
            raise NotReady("Inventory record is inactive", inventory_id=inventory.id)
        requested = abs(dr) if dc == 0 else abs(dc)
        raise InsufficientStock(requested=requested, available=inventory.available_stock)

    if change.movement_type is None:
        return None

    movement = StockMovement(
        inventory_id=inventory.id,
        movement_type=change.movement_type,
        quantity_delta=dc,
        reserved_delta=dr,
        balance_after=inventory.current_stock,
        reserved_after=inventory.reserved_stock,
        from_location=from_location,
        to_location=to_location,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line_id=reference_line_id,
        transfer_ref=transfer_ref,
        idempotency_key=idempotency_key,
        reason=reason[:255] if reason else None,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement
