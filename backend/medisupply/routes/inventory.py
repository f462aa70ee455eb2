# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

"""
Inventory Routes

Every quantity change goes through inventory_service and returns the
updated record plus the appended movement, so clients never need to
recompute balances.

Permissions:
- INVENTORY_VIEW      reads, alerts, valuation, statistics, journey
- INVENTORY_ADJUST    add / remove / adjust / write-off / return; opening balances
- INVENTORY_RESERVE   reserve, release, fulfil
- INVENTORY_TRANSFER  transfers and relocations
- INVENTORY_UTILIZE   hospital utilization
- INVENTORY_MANAGE    settings (single and bulk), deactivate, restore

Insufficient available stock returns 409 with kind="insufficient_stock",
"requested" and "available".
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError
from ..extensions import db
from ..services import inventory_service
from ..services.concurrency import commit_or_conflict
from ..validation import optional_date, page_args


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _change_response(inventory_id: int, movement=None, **extra):
    inventory = inventory_service.get_inventory(inventory_id)
    body = {"inventory": inventory.to_dict()}
    if movement is not None:
        body["movement"] = movement.to_dict()
    body.update(extra)
    return jsonify(body)


def _fail(action: str, inventory_id=None):
    db.session.rollback()
    current_app.logger.exception("Failed to %s inventory %s", action, inventory_id)
    return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("")
@require_auth
@require_permission("INVENTORY_VIEW")
def list_inventory_route():
    limit, offset = page_args(request.args)
    rows, total = inventory_service.list_inventory(
        product_id=request.args.get("product_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
        batch_no=request.args.get("batch_no"),
        include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [inv.to_dict() for inv in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@inventory_bp.post("")
@require_auth
@require_permission("INVENTORY_ADJUST")
def create_inventory_route():
    """
    Open a record with an opening balance.

    Request body:
    {
        "product_id": int, "batch_no": str, "warehouse_id": int,
        "quantity": int, "unit_cost_cents": int,
        "location": {"zone", "rack", "shelf", "bin"},
        "mfg_date": "YYYY-MM-DD", "expiry_date": "YYYY-MM-DD",
        "minimum_stock": int, "reorder_level": int, "maximum_stock": int
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        inventory = inventory_service.create_inventory(
            product_id=data.get("product_id"),
            batch_no=data.get("batch_no"),
            warehouse_id=data.get("warehouse_id"),
            actor=g.current_user,
            quantity=data.get("quantity", 0),
            unit_cost_cents=data.get("unit_cost_cents", 0),
            location=data.get("location"),
            mfg_date=optional_date(data.get("mfg_date"), "mfg_date"),
            expiry_date=optional_date(data.get("expiry_date"), "expiry_date"),
            minimum_stock=data.get("minimum_stock", 0),
            reorder_level=data.get("reorder_level", 0),
            maximum_stock=data.get("maximum_stock"),
        )
        commit_or_conflict()
        return jsonify(inventory.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("create")


@inventory_bp.get("/alerts")
@require_auth
@require_permission("INVENTORY_VIEW")
def stock_alerts_route():
    try:
        as_of = optional_date(request.args.get("as_of"), "as_of")
        return jsonify(inventory_service.stock_alerts(
            warehouse_id=request.args.get("warehouse_id", type=int), as_of=as_of,
        ))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/valuation")
@require_auth
@require_permission("INVENTORY_VIEW")
def valuation_route():
    return jsonify(inventory_service.valuation_summary(
        warehouse_id=request.args.get("warehouse_id", type=int),
    ))


@inventory_bp.get("/statistics")
@require_auth
@require_permission("INVENTORY_VIEW")
def inventory_statistics_route():
    try:
        as_of = optional_date(request.args.get("as_of"), "as_of")
        return jsonify(inventory_service.inventory_statistics(
            warehouse_id=request.args.get("warehouse_id", type=int), as_of=as_of,
        ))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/<int:inventory_id>")
@require_auth
@require_permission("INVENTORY_VIEW")
def get_inventory_route(inventory_id: int):
    try:
        return jsonify(inventory_service.get_inventory(inventory_id).to_dict())
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/<int:inventory_id>/movements")
@require_auth
@require_permission("INVENTORY_VIEW")
def list_movements_route(inventory_id: int):
    try:
        rows = inventory_service.list_movements(
            inventory_id,
            movement_type=request.args.get("type"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"items": [m.to_dict() for m in rows], "count": len(rows)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/<int:inventory_id>/journey")
@require_auth
@require_permission("INVENTORY_VIEW")
def product_journey_route(inventory_id: int):
    try:
        return jsonify(inventory_service.product_journey(inventory_id))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


# ---------------------------------------------------------------------------
# Quantity operations
# ---------------------------------------------------------------------------

@inventory_bp.post("/<int:inventory_id>/stock/<operation>")
@require_auth
@require_permission("INVENTORY_ADJUST")
def stock_operation_route(inventory_id: int, operation: str):
    """
    Quantity operations. Request bodies:

    - add / remove / return: {"quantity": int, "reason": str, "reference_type", "reference_id"}
    - adjust:                {"delta": int, "reason": str}   (reason required)
    - write-off:             {"quantity": int, "write_off_type": "expired"|"damaged"|"lost", "reason": str}
    """
    data = request.get_json(silent=True) or {}
    actor = g.current_user

    try:
        if operation == "add":
            movement = inventory_service.add_stock(
                inventory_id, quantity=data.get("quantity"), actor=actor, reason=data.get("reason"),
                reference_type=data.get("reference_type"), reference_id=data.get("reference_id"),
            )
        elif operation == "remove":
            movement = inventory_service.remove_stock(
                inventory_id, quantity=data.get("quantity"), actor=actor, reason=data.get("reason"),
                reference_type=data.get("reference_type"), reference_id=data.get("reference_id"),
            )
        elif operation == "return":
            movement = inventory_service.return_stock(
                inventory_id, quantity=data.get("quantity"), actor=actor, reason=data.get("reason"),
                reference_type=data.get("reference_type"), reference_id=data.get("reference_id"),
            )
        elif operation == "adjust":
            if not (data.get("reason") or "").strip():
                raise ValidationError("A reason is required for stock adjustments")
            movement = inventory_service.adjust_stock(
                inventory_id, delta=data.get("delta"), reason=data["reason"].strip(), actor=actor,
            )
        elif operation == "write-off":
            movement = inventory_service.write_off_stock(
                inventory_id, quantity=data.get("quantity"), write_off_type=data.get("write_off_type"),
                actor=actor, reason=data.get("reason"),
            )
        else:
            return jsonify({"error": f"Unknown stock operation: {operation}"}), 404

        commit_or_conflict()
        return _change_response(inventory_id, movement)
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail(operation, inventory_id)


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------

@inventory_bp.get("/<int:inventory_id>/reservations")
@require_auth
@require_permission("INVENTORY_VIEW")
def list_reservations_route(inventory_id: int):
    try:
        rows = inventory_service.list_reservations(inventory_id, status=request.args.get("status"))
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/<int:inventory_id>/reservations")
@require_auth
@require_permission("INVENTORY_RESERVE")
def reserve_stock_route(inventory_id: int):
    """
    Request body:
    {"quantity": int, "reserved_for": str, "expires_at": ISO-8601,
     "reference_type": str, "reference_id": int}
    """
    data = request.get_json(silent=True) or {}

    try:
        reservation = inventory_service.reserve_stock(
            inventory_id,
            quantity=data.get("quantity"),
            reserved_for=data.get("reserved_for"),
            actor=g.current_user,
            expires_at=data.get("expires_at"),
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
        )
        commit_or_conflict()
        return _change_response(inventory_id, reservation=reservation.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("reserve", inventory_id)


@inventory_bp.post("/<int:inventory_id>/reservations/<int:reservation_id>/release")
@require_auth
@require_permission("INVENTORY_RESERVE")
def release_reservation_route(inventory_id: int, reservation_id: int):
    data = request.get_json(silent=True) or {}

    try:
        reservation = inventory_service.release_reservation(
            inventory_id, reservation_id, actor=g.current_user, reason=data.get("reason"),
        )
        commit_or_conflict()
        return _change_response(inventory_id, reservation=reservation.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("release reservation on", inventory_id)


@inventory_bp.post("/<int:inventory_id>/reservations/<int:reservation_id>/fulfill")
@require_auth
@require_permission("INVENTORY_RESERVE")
def fulfill_reservation_route(inventory_id: int, reservation_id: int):
    data = request.get_json(silent=True) or {}

    try:
        movement = inventory_service.fulfill_reservation(
            inventory_id, reservation_id, actor=g.current_user, reason=data.get("reason"),
        )
        commit_or_conflict()
        return _change_response(inventory_id, movement)
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("fulfil reservation on", inventory_id)


# ---------------------------------------------------------------------------
# Transfers and utilization
# ---------------------------------------------------------------------------

@inventory_bp.post("/<int:inventory_id>/transfer")
@require_auth
@require_permission("INVENTORY_TRANSFER")
def transfer_stock_route(inventory_id: int):
    """
    Request body:
    {"quantity": int, "to_warehouse_id": int, "to_location": {"zone", "rack", "shelf", "bin"}, "reason": str}
    """
    data = request.get_json(silent=True) or {}

    try:
        result = inventory_service.transfer_stock(
            inventory_id,
            quantity=data.get("quantity"),
            actor=g.current_user,
            to_warehouse_id=data.get("to_warehouse_id"),
            to_location=data.get("to_location"),
            reason=data.get("reason"),
        )
        commit_or_conflict()
        return jsonify({
            "transfer_ref": result["transfer_ref"],
            "source": result["source"].to_dict(),
            "destination": result["destination"].to_dict(),
            "movements": [m.to_dict() for m in result["movements"]],
        })
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("transfer", inventory_id)


@inventory_bp.post("/<int:inventory_id>/utilization")
@require_auth
@require_permission("INVENTORY_UTILIZE")
def record_utilization_route(inventory_id: int):
    """
    Request body:
    {"quantity": int, "hospital_ref": str, "case_ref": str, "patient_ref": str,
     "doctor_ref": str, "reason": str}
    """
    data = request.get_json(silent=True) or {}

    try:
        record = inventory_service.record_utilization(
            inventory_id,
            quantity=data.get("quantity"),
            hospital_ref=data.get("hospital_ref"),
            actor=g.current_user,
            case_ref=data.get("case_ref"),
            patient_ref=data.get("patient_ref"),
            doctor_ref=data.get("doctor_ref"),
            reason=data.get("reason"),
        )
        commit_or_conflict()
        return _change_response(inventory_id, utilization=record.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("record utilization on", inventory_id)


# ---------------------------------------------------------------------------
# Settings and lifecycle
# ---------------------------------------------------------------------------

@inventory_bp.patch("/<int:inventory_id>")
@require_auth
@require_permission("INVENTORY_MANAGE")
def update_settings_route(inventory_id: int):
    data = request.get_json(silent=True) or {}

    try:
        inventory = inventory_service.update_settings(inventory_id, actor=g.current_user, changes=data)
        commit_or_conflict()
        return jsonify(inventory.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("update", inventory_id)


@inventory_bp.post("/bulk-settings")
@require_auth
@require_permission("INVENTORY_MANAGE")
def bulk_update_settings_route():
    """
    Request body:
    {"inventory_ids": [int], "changes": {"minimum_stock", "maximum_stock", "reorder_level", "location"}}
    """
    data = request.get_json(silent=True) or {}

    try:
        result = inventory_service.bulk_update_settings(
            data.get("inventory_ids"), actor=g.current_user, changes=data.get("changes"),
        )
        commit_or_conflict()
        return jsonify(result)
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("bulk update")


@inventory_bp.delete("/<int:inventory_id>")
@require_auth
@require_permission("INVENTORY_MANAGE")
def soft_delete_route(inventory_id: int):
    try:
        inventory = inventory_service.soft_delete(inventory_id, actor=g.current_user)
        commit_or_conflict()
        return jsonify(inventory.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("deactivate", inventory_id)


@inventory_bp.post("/<int:inventory_id>/restore")
@require_auth
@require_permission("INVENTORY_MANAGE")
def restore_route(inventory_id: int):
    try:
        inventory = inventory_service.restore(inventory_id, actor=g.current_user)
        commit_or_conflict()
        return jsonify(inventory.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _fail("restore", inventory_id)
