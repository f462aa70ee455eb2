# Overview: Flask API routes for quality control inspections; parses input and returns JSON responses.

"""
Quality Control Routes

Lifecycle: pending -> in_progress -> submitted -> approved | rejected

- Creating requires QC_CREATE
- Item results, assignment and submission require QC_INSPECT (the service
  additionally limits edits to the assigned inspector unless QC_APPROVE)
- Approval, rejection and bulk assignment require QC_APPROVE
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError
from ..extensions import db
from ..services import quality_control_service
from ..services.concurrency import commit_or_conflict
from ..validation import coerce_int, page_args


quality_control_bp = Blueprint("quality_control", __name__, url_prefix="/api/quality-control")


@quality_control_bp.get("")
@require_auth
@require_permission("QC_VIEW")
def list_qcs_route():
    limit, offset = page_args(request.args)
    rows, total = quality_control_service.list_qcs(
        status=request.args.get("status"),
        assigned_to_user_id=request.args.get("assigned_to", type=int),
        overall=request.args.get("overall_result"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [qc.to_dict(include_items=False) for qc in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@quality_control_bp.get("/statistics")
@require_auth
@require_permission("QC_VIEW")
def qc_statistics_route():
    return jsonify(quality_control_service.qc_statistics())


@quality_control_bp.get("/workload")
@require_auth
@require_permission("QC_VIEW")
def qc_workload_route():
    active_only = request.args.get("status", "active") == "active"
    return jsonify({"items": quality_control_service.qc_workload(active_only=active_only)})


@quality_control_bp.post("/bulk-assign")
@require_auth
@require_permission("QC_APPROVE")
def bulk_assign_qc_route():
    """
    Request body:
    {"qc_ids": [int], "assigned_to_user_id": int, "priority": "low"|"medium"|"high"|"urgent"}
    """
    data = request.get_json(silent=True) or {}

    try:
        result = quality_control_service.bulk_assign_qcs(
            data.get("qc_ids"),
            assigned_to_user_id=data.get("assigned_to_user_id"),
            actor=g.current_user,
            priority=data.get("priority"),
        )
        commit_or_conflict()
        return jsonify(result)
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to bulk assign QC records")
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.post("")
@require_auth
@require_permission("QC_CREATE")
def create_qc_route():
    """
    Request body:
    {
        "invoice_receiving_id": int,
        "assigned_to_user_id": int,          // optional
        "qc_type": "standard"|"urgent"|"special"|"stability_testing",
        "priority": "low"|"medium"|"high"|"urgent",
        "environment": {"temperature_c": 22.5, "humidity_pct": 40, "light_condition": "normal"},
        "invoice_line_ids": [int]            // optional subset
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        qc = quality_control_service.create_qc(
            invoice_receiving_id=data.get("invoice_receiving_id"),
            actor=g.current_user,
            assigned_to_user_id=data.get("assigned_to_user_id"),
            qc_type=data.get("qc_type") or "standard",
            priority=data.get("priority") or "medium",
            environment=data.get("environment"),
            invoice_line_ids=data.get("invoice_line_ids"),
        )
        commit_or_conflict()
        return jsonify(qc.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create QC record")
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.get("/<int:qc_id>")
@require_auth
@require_permission("QC_VIEW")
def get_qc_route(qc_id: int):
    try:
        return jsonify(quality_control_service.get_qc(qc_id).to_dict())
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@quality_control_bp.put("/<int:qc_id>/items")
@require_auth
@require_permission("QC_INSPECT")
def update_items_route(qc_id: int):
    """
    Record one or more item results in a single transaction.

    Request body:
    {
        "results": [{
            "qc_product_id": int, "item_id": int,
            "status": "passed"|"failed",
            "reasons": ["damaged_packaging", ...],
            "remarks": str
        }]
    }
    A single result object (without the "results" wrapper) is accepted too.
    """
    data = request.get_json(silent=True) or {}
    results = data.get("results")
    if results is None:
        results = [data]

    try:
        if not isinstance(results, list) or not results:
            raise ValidationError("results must be a non-empty list")

        qc = None
        for idx, result in enumerate(results):
            if not isinstance(result, dict):
                raise ValidationError(f"results[{idx}] must be an object")
            qc = quality_control_service.update_item_result(
                qc_id,
                qc_product_id=coerce_int(result.get("qc_product_id"), f"results[{idx}].qc_product_id"),
                item_id=coerce_int(result.get("item_id"), f"results[{idx}].item_id"),
                status=result.get("status"),
                actor=g.current_user,
                reasons=result.get("reasons"),
                remarks=result.get("remarks"),
            )
        commit_or_conflict()
        return jsonify(qc.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update QC %s items", qc_id)
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.post("/<int:qc_id>/assign")
@require_auth
@require_permission("QC_INSPECT")
def assign_qc_route(qc_id: int):
    data = request.get_json(silent=True) or {}

    try:
        qc = quality_control_service.assign_qc(
            qc_id, assigned_to_user_id=data.get("assigned_to_user_id"), actor=g.current_user,
        )
        commit_or_conflict()
        return jsonify(qc.to_dict(include_items=False))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign QC %s", qc_id)
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.post("/<int:qc_id>/submit")
@require_auth
@require_permission("QC_INSPECT")
def submit_qc_route(qc_id: int):
    data = request.get_json(silent=True) or {}

    try:
        qc = quality_control_service.submit_qc(qc_id, actor=g.current_user, remarks=data.get("remarks"))
        commit_or_conflict()
        return jsonify(qc.to_dict(include_items=False))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit QC %s", qc_id)
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.post("/<int:qc_id>/approve")
@require_auth
@require_permission("QC_APPROVE")
def approve_qc_route(qc_id: int):
    data = request.get_json(silent=True) or {}

    try:
        qc = quality_control_service.approve_qc(qc_id, actor=g.current_user, remarks=data.get("remarks"))
        commit_or_conflict()
        return jsonify(qc.to_dict(include_items=False))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve QC %s", qc_id)
        return jsonify({"error": "Internal server error"}), 500


@quality_control_bp.post("/<int:qc_id>/reject")
@require_auth
@require_permission("QC_APPROVE")
def reject_qc_route(qc_id: int):
    data = request.get_json(silent=True) or {}

    try:
        qc = quality_control_service.reject_qc(qc_id, actor=g.current_user, reason=data.get("reason"))
        commit_or_conflict()
        return jsonify(qc.to_dict(include_items=False))
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject QC %s", qc_id)
        return jsonify({"error": "Internal server error"}), 500
