# Overview: Flask API routes for warehouse approvals; parses input and returns JSON responses.

"""
Warehouse Approval Routes

Approval commits the approval first and then posts inventory inside a
savepoint. If posting fails the approval stays committed, the record is
marked inventory_integration_status="failed" and the response is
207 Multi-Status with kind="partial_success". Posting can be replayed via
POST /<id>/reconcile (INVENTORY_RECONCILE) or `flask inventory reconcile`.
"""

from datetime import datetime, time, timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..extensions import db
from ..services import warehouse_approval_service
from ..services.concurrency import commit_or_conflict
from ..validation import optional_date, page_args


warehouse_approvals_bp = Blueprint("warehouse_approvals", __name__, url_prefix="/api/warehouse-approvals")


@warehouse_approvals_bp.get("")
@require_auth
@require_permission("WA_VIEW")
def list_warehouse_approvals_route():
    limit, offset = page_args(request.args)
    rows, total = warehouse_approval_service.list_warehouse_approvals(
        status=request.args.get("status"),
        integration_status=request.args.get("integration_status"),
        warehouse_id=request.args.get("warehouse_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [wa.to_dict() for wa in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@warehouse_approvals_bp.get("/statistics")
@require_auth
@require_permission("WA_VIEW")
def warehouse_approval_statistics_route():
    try:
        date_from = optional_date(request.args.get("date_from"), "date_from")
        date_to = optional_date(request.args.get("date_to"), "date_to")
        return jsonify(warehouse_approval_service.warehouse_approval_statistics(
            created_from=datetime.combine(date_from, time.min) if date_from else None,
            created_to=datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None,
            warehouse_id=request.args.get("warehouse_id", type=int),
        ))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@warehouse_approvals_bp.get("/dashboard")
@require_auth
@require_permission("WA_VIEW")
def warehouse_approval_dashboard_route():
    return jsonify(warehouse_approval_service.warehouse_approval_dashboard(
        days=request.args.get("days", 30, type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
    ))


@warehouse_approvals_bp.get("/workload")
@require_auth
@require_permission("WA_VIEW")
def warehouse_approval_workload_route():
    active_only = request.args.get("status", "active") == "active"
    return jsonify({"items": warehouse_approval_service.warehouse_approval_workload(active_only=active_only)})


@warehouse_approvals_bp.post("/bulk-assign")
@require_auth
@require_permission("WA_APPROVE")
def bulk_assign_warehouse_approval_route():
    """Request body: {"warehouse_approval_ids": [int], "assigned_to_user_id": int}"""
    data = request.get_json(silent=True) or {}

    try:
        result = warehouse_approval_service.bulk_assign_warehouse_approvals(
            data.get("warehouse_approval_ids"),
            assigned_to_user_id=data.get("assigned_to_user_id"),
            actor=g.current_user,
        )
        commit_or_conflict()
        return jsonify(result)
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to bulk assign warehouse approvals")
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("")
@require_auth
@require_permission("WA_CREATE")
def create_warehouse_approval_route():
    """
    Request body:
    {
        "quality_control_id": int,      // must be an approved QC record
        "warehouse_id": int,
        "assigned_to_user_id": int,     // optional
        "remarks": str                  // optional
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.create_warehouse_approval(
            quality_control_id=data.get("quality_control_id"),
            warehouse_id=data.get("warehouse_id"),
            actor=g.current_user,
            assigned_to_user_id=data.get("assigned_to_user_id"),
            remarks=data.get("remarks"),
        )
        commit_or_conflict()
        return jsonify(wa.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create warehouse approval")
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.get("/<int:wa_id>")
@require_auth
@require_permission("WA_VIEW")
def get_warehouse_approval_route(wa_id: int):
    try:
        return jsonify(warehouse_approval_service.get_warehouse_approval(wa_id).to_dict())
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@warehouse_approvals_bp.put("/<int:wa_id>/products/<int:line_id>")
@require_auth
@require_permission("WA_UPDATE")
def update_product_route(wa_id: int, line_id: int):
    """
    Request body:
    {
        "approved_qty": int, "rejected_qty": int,
        "location": {"zone": "A", "rack": "R1", "shelf": "S2", "bin": "B4"},
        "rejection_reasons": [str], "remarks": str
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.update_product_approval(
            wa_id,
            line_id,
            actor=g.current_user,
            approved_qty=data.get("approved_qty"),
            rejected_qty=data.get("rejected_qty", 0),
            location=data.get("location"),
            rejection_reasons=data.get("rejection_reasons"),
            remarks=data.get("remarks"),
        )
        commit_or_conflict()
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update warehouse approval %s line %s", wa_id, line_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("/<int:wa_id>/assign")
@require_auth
@require_permission("WA_UPDATE")
def assign_warehouse_approval_route(wa_id: int):
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.assign_warehouse_approval(
            wa_id, assigned_to_user_id=data.get("assigned_to_user_id"), actor=g.current_user,
        )
        commit_or_conflict()
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign warehouse approval %s", wa_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("/<int:wa_id>/submit")
@require_auth
@require_permission("WA_UPDATE")
def submit_warehouse_approval_route(wa_id: int):
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.submit_warehouse_approval(
            wa_id, actor=g.current_user, remarks=data.get("remarks"),
        )
        commit_or_conflict()
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit warehouse approval %s", wa_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("/<int:wa_id>/approve")
@require_auth
@require_permission("WA_APPROVE")
def approve_warehouse_approval_route(wa_id: int):
    """
    Returns:
        200: approved and inventory posted
        207: approved, inventory posting failed (body carries the resource)
        409: not submitted
    """
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.approve_warehouse_approval(
            wa_id, actor=g.current_user, remarks=data.get("remarks"),
        )
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve warehouse approval %s", wa_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("/<int:wa_id>/reject")
@require_auth
@require_permission("WA_APPROVE")
def reject_warehouse_approval_route(wa_id: int):
    data = request.get_json(silent=True) or {}

    try:
        wa = warehouse_approval_service.reject_warehouse_approval(
            wa_id, actor=g.current_user, reason=data.get("reason"),
        )
        commit_or_conflict()
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject warehouse approval %s", wa_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_approvals_bp.post("/<int:wa_id>/reconcile")
@require_auth
@require_permission("INVENTORY_RECONCILE")
def reconcile_warehouse_approval_route(wa_id: int):
    try:
        wa = warehouse_approval_service.reconcile_inventory(wa_id, actor=g.current_user)
        return jsonify(wa.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile warehouse approval %s", wa_id)
        return jsonify({"error": "Internal server error"}), 500
