# Overview: Flask API routes for master data (products, warehouses, principals).

"""
Master Data Routes

/api/master-data/<kind> where kind is one of: products, warehouses, principals

- GET requires MASTER_DATA_VIEW
- POST / activate / deactivate require MASTER_DATA_MANAGE
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..extensions import db
from ..services import master_data_service
from ..services.concurrency import commit_or_conflict


master_data_bp = Blueprint("master_data", __name__, url_prefix="/api/master-data")

KINDS = {"products": "product", "warehouses": "warehouse", "principals": "principal"}


def _kind(plural: str) -> str | None:
    return KINDS.get(plural)


@master_data_bp.get("/<plural>")
@require_auth
@require_permission("MASTER_DATA_VIEW")
def list_records_route(plural: str):
    kind = _kind(plural)
    if kind is None:
        return jsonify({"error": f"Unknown master data type: {plural}"}), 404

    rows = master_data_service.list_records(
        kind,
        include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
        search=request.args.get("search"),
    )
    return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)})


@master_data_bp.post("/<plural>")
@require_auth
@require_permission("MASTER_DATA_MANAGE")
def create_record_route(plural: str):
    """Request body: {"code": str, "name": str, "unit": str (products only)}"""
    kind = _kind(plural)
    if kind is None:
        return jsonify({"error": f"Unknown master data type: {plural}"}), 404

    data = request.get_json(silent=True) or {}

    try:
        record = master_data_service.create_record(
            kind, code=data.get("code"), name=data.get("name"), unit=data.get("unit"),
        )
        commit_or_conflict()
        return jsonify(record.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@master_data_bp.post("/<plural>/<int:record_id>/<state>")
@require_auth
@require_permission("MASTER_DATA_MANAGE")
def set_active_route(plural: str, record_id: int, state: str):
    kind = _kind(plural)
    if kind is None or state not in ("activate", "deactivate"):
        return jsonify({"error": "Not found"}), 404

    try:
        record = master_data_service.set_active(kind, record_id, state == "activate")
        commit_or_conflict()
        return jsonify(record.to_dict())
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s %s %s", state, kind, record_id)
        return jsonify({"error": "Internal server error"}), 500
