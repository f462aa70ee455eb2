# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

"""
Purchase Order Routes

SECURITY: All routes require authentication.
- Listing / reading requires PO_VIEW
- Creating requires PO_CREATE, deleting PO_DELETE
- Editing and every workflow action are gated per stage by the workflow
  engine (global permissions plus stage-scoped assignments), not by a
  fixed permission here

Error bodies: {"error", "kind", ...details}; see errors.py for status codes.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..extensions import db
from ..services import purchase_order_service, workflow_service
from ..services.concurrency import commit_or_conflict
from ..validation import page_args


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


def _po_payload(po, include_actions: bool = True) -> dict:
    data = po.to_dict()
    if include_actions:
        data["available_actions"] = workflow_service.allowed_actions_for(g.current_user, po)
    return data


@purchase_orders_bp.get("")
@require_auth
@require_permission("PO_VIEW")
def list_purchase_orders_route():
    """
    Query parameters: status, principal_id, limit, offset

    Returns:
        {items: PurchaseOrder[], count, limit, offset}
    """
    limit, offset = page_args(request.args)
    rows, total = purchase_order_service.list_purchase_orders(
        status=request.args.get("status"),
        principal_id=request.args.get("principal_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [po.to_dict(include_lines=False) for po in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@purchase_orders_bp.post("")
@require_auth
@require_permission("PO_CREATE")
def create_purchase_order_route():
    """
    Create a purchase order in the initial workflow stage.

    Request body:
    {
        "principal_id": int,           // optional
        "po_date": "YYYY-MM-DD",       // optional, defaults to today
        "notes": str,                  // optional
        "lines": [{
            "product_id": int, "quantity": int, "foc_quantity": int,
            "unit_price_cents": int, "discount_type": "amount"|"percentage",
            "discount_value": number, "gst_percentage": number
        }]
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        po = purchase_order_service.create_purchase_order(
            lines=data.get("lines"),
            actor=g.current_user,
            principal_id=data.get("principal_id"),
            po_date=data.get("po_date"),
            notes=data.get("notes"),
        )
        commit_or_conflict()
        return jsonify(_po_payload(po)), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:po_id>")
@require_auth
@require_permission("PO_VIEW")
def get_purchase_order_route(po_id: int):
    try:
        po = purchase_order_service.get_purchase_order(po_id)
        return jsonify(_po_payload(po))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@purchase_orders_bp.put("/<int:po_id>")
@require_auth
@require_permission("PO_VIEW")
def update_purchase_order_route(po_id: int):
    """
    Edit a purchase order while its stage allows "edit".

    Request body (all optional): lines, principal_id, po_date, notes
    """
    data = request.get_json(silent=True) or {}

    try:
        po = purchase_order_service.update_purchase_order(
            po_id,
            actor=g.current_user,
            lines=data.get("lines"),
            principal_id=data.get("principal_id"),
            po_date=data.get("po_date"),
            notes=data.get("notes"),
        )
        commit_or_conflict()
        return jsonify(_po_payload(po))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase order %s", po_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.delete("/<int:po_id>")
@require_auth
@require_permission("PO_DELETE")
def delete_purchase_order_route(po_id: int):
    try:
        purchase_order_service.delete_purchase_order(po_id, actor=g.current_user)
        commit_or_conflict()
        return jsonify({"message": "Purchase order deleted"}), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete purchase order %s", po_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:po_id>/actions/<action>")
@require_auth
@require_permission("PO_VIEW")
def transition_purchase_order_route(po_id: int, action: str):
    """
    Perform a workflow action (submit, approve, return, reject, send,
    receive, receive_partial, qc_check, complete, cancel).

    Request body: the transition payload, e.g.
    {"remarks": "...", "products": [{"product_id": 1, "received_qty": 10}]}

    Returns:
        200: updated purchase order
        400: missing required field / invalid payload
        403: actor lacks the stage's permissions
        409: action not valid from the current stage, or concurrent change
    """
    data = request.get_json(silent=True) or {}

    try:
        po = purchase_order_service.transition(po_id, action, data, g.current_user)
        commit_or_conflict()
        return jsonify(_po_payload(po))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s purchase order %s", action, po_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:po_id>/history")
@require_auth
@require_permission("PO_VIEW")
def purchase_order_history_route(po_id: int):
    try:
        entries = purchase_order_service.get_history(po_id)
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@purchase_orders_bp.get("/<int:po_id>/history/verify")
@require_auth
@require_permission("PO_VIEW")
def verify_purchase_order_history_route(po_id: int):
    try:
        return jsonify(purchase_order_service.replay_history(po_id))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
