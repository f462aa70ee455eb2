# Overview: Flask API routes for the workflow engine; stages, graph, stage-scoped permissions.

"""
Workflow Routes

- GET    /api/workflow/stages                      active stages (include_inactive=1 for all)
- GET    /api/workflow/transitions                 active transitions
- GET    /api/workflow/visualize                   nodes, edges and a Mermaid chart
- GET    /api/workflow/statistics                  purchase orders per stage
- GET    /api/workflow/stage-permissions           active assignments (stage, user_id filters)
- POST   /api/workflow/stage-permissions           assign to a user or a role
- DELETE /api/workflow/stage-permissions/<id>      revoke
- GET    /api/workflow/purchase-orders/<id>/actions  actions the caller can perform now

Reads require WORKFLOW_VIEW; assignment changes require WORKFLOW_MANAGE.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError
from ..extensions import db
from ..services import purchase_order_service, stage_permission_service, workflow_service
from ..services.concurrency import commit_or_conflict
from ..time_utils import parse_iso_datetime


workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/workflow")


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "").lower() in ("1", "true", "yes")


@workflow_bp.get("/stages")
@require_auth
@require_permission("WORKFLOW_VIEW")
def list_stages_route():
    stages = workflow_service.list_stages(include_inactive=_include_inactive())
    return jsonify({"items": [s.to_dict() for s in stages], "count": len(stages)})


@workflow_bp.get("/transitions")
@require_auth
@require_permission("WORKFLOW_VIEW")
def list_transitions_route():
    transitions = workflow_service.list_transitions(include_inactive=_include_inactive())
    return jsonify({"items": [t.to_dict() for t in transitions], "count": len(transitions)})


@workflow_bp.get("/visualize")
@require_auth
@require_permission("WORKFLOW_VIEW")
def visualize_route():
    return jsonify(workflow_service.visualize())


@workflow_bp.get("/statistics")
@require_auth
@require_permission("WORKFLOW_VIEW")
def statistics_route():
    return jsonify({"items": workflow_service.stage_statistics()})


@workflow_bp.get("/stage-permissions")
@require_auth
@require_permission("WORKFLOW_VIEW")
def list_stage_permissions_route():
    try:
        rows = stage_permission_service.list_stage_permissions(
            stage_code=request.args.get("stage"),
            user_id=request.args.get("user_id", type=int),
        )
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@workflow_bp.post("/stage-permissions")
@require_auth
@require_permission("WORKFLOW_MANAGE")
def assign_stage_permission_route():
    """
    Request body:
    {
        "stage": "PENDING_APPROVAL_L1",
        "permission_code": "PO_APPROVE_L1",
        "user_id": 7,                 // or "role_name": "Manager"
        "expires_at": "2026-01-01T00:00:00Z"   // optional
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        try:
            expires_at = parse_iso_datetime(data.get("expires_at"))
        except ValueError:
            raise ValidationError("expires_at must be an ISO-8601 datetime")

        assignment = stage_permission_service.assign_stage_permission(
            stage_code=data.get("stage"),
            permission_code=data.get("permission_code"),
            user_id=data.get("user_id"),
            role_name=data.get("role_name"),
            expires_at=expires_at,
            assigned_by_user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(assignment.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign stage permission")
        return jsonify({"error": "Internal server error"}), 500


@workflow_bp.delete("/stage-permissions/<int:assignment_id>")
@require_auth
@require_permission("WORKFLOW_MANAGE")
def revoke_stage_permission_route(assignment_id: int):
    try:
        assignment = stage_permission_service.revoke_stage_permission(assignment_id)
        commit_or_conflict()
        return jsonify(assignment.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to revoke stage permission %s", assignment_id)
        return jsonify({"error": "Internal server error"}), 500


@workflow_bp.get("/purchase-orders/<int:po_id>/actions")
@require_auth
@require_permission("PO_VIEW")
def allowed_actions_route(po_id: int):
    try:
        po = purchase_order_service.get_purchase_order(po_id)
        return jsonify({
            "purchase_order_id": po.id,
            "stage": po.current_stage.code if po.current_stage else None,
            "actions": workflow_service.allowed_actions_for(g.current_user, po),
        })
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
