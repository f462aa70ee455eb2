# Overview: Flask API routes for audit and security event logs (read-only).

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_permission
from ..services import audit_service
from ..validation import page_args


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/events")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_events_route():
    """
    Query parameters: resource, resource_id, actor_user_id, limit, offset

    Example: /api/audit/events?resource=purchase_order&resource_id=12
    """
    limit, offset = page_args(request.args)
    rows, total = audit_service.list_events(
        resource=request.args.get("resource"),
        resource_id=request.args.get("resource_id", type=int),
        actor_user_id=request.args.get("actor_user_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [ev.to_dict() for ev in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@audit_bp.get("/security-events")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_security_events_route():
    limit, offset = page_args(request.args)
    success = request.args.get("success")
    rows, total = audit_service.list_security_events(
        event_type=request.args.get("event_type"),
        user_id=request.args.get("user_id", type=int),
        success=None if success is None else success.lower() in ("1", "true", "yes"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [ev.to_dict() for ev in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    })
