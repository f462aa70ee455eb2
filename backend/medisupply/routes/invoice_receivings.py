# Overview: Flask API routes for invoice receivings; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..extensions import db
from ..services import invoice_receiving_service
from ..services.concurrency import commit_or_conflict
from ..validation import page_args


invoice_receivings_bp = Blueprint("invoice_receivings", __name__, url_prefix="/api/invoice-receivings")


@invoice_receivings_bp.get("")
@require_auth
@require_permission("INVOICE_VIEW")
def list_invoice_receivings_route():
    limit, offset = page_args(request.args)
    rows, total = invoice_receiving_service.list_invoice_receivings(
        purchase_order_id=request.args.get("purchase_order_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [r.to_dict() for r in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@invoice_receivings_bp.post("")
@require_auth
@require_permission("INVOICE_CREATE")
def create_invoice_receiving_route():
    """
    Record a supplier invoice against an ordered / partially received PO.

    Request body:
    {
        "purchase_order_id": int,
        "invoice_number": str,
        "invoice_date": "YYYY-MM-DD",       // optional
        "lines": [{
            "product_id": int, "received_qty": int, "batch_number": str,
            "mfg_date": "YYYY-MM-DD", "expiry_date": "YYYY-MM-DD",
            "unit_price_cents": int          // optional, defaults to PO price
        }]
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        invoice = invoice_receiving_service.create_invoice_receiving(
            purchase_order_id=data.get("purchase_order_id"),
            invoice_number=data.get("invoice_number"),
            lines=data.get("lines"),
            actor=g.current_user,
            invoice_date=data.get("invoice_date"),
            notes=data.get("notes"),
        )
        commit_or_conflict()
        return jsonify(invoice.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record invoice receiving")
        return jsonify({"error": "Internal server error"}), 500


@invoice_receivings_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("INVOICE_VIEW")
def get_invoice_receiving_route(invoice_id: int):
    try:
        return jsonify(invoice_receiving_service.get_invoice_receiving(invoice_id).to_dict())
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
