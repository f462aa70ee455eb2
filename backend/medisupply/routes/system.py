# backend/medisupply/routes/system.py
"""
System health endpoint.

Checks the database, the role/permission bootstrap and the loaded workflow
so a deployment that skipped `flask system init` reports "degraded".
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, Role, Permission, WorkflowStage, WorkflowTransition
from ..permissions import DEFAULT_ROLES
from ..time_utils import utcnow, to_utc_z
from ..workflow_definition import WORKFLOW_VERSION

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        permission_count = db.session.query(Permission).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "permissions": permission_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_auth_health() -> dict:
    """Verify the default roles exist and permissions are initialized."""
    start_time = time.time()
    try:
        missing_roles = [
            name for name, _ in DEFAULT_ROLES
            if not db.session.query(Role.id).filter_by(name=name).first()
        ]
        permission_count = db.session.query(Permission).count()

        elapsed_ms = (time.time() - start_time) * 1000

        if missing_roles or permission_count == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing roles: {', '.join(missing_roles)}" if missing_roles else "No permissions",
                "details": {"permission_count": permission_count},
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"permission_count": permission_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Auth health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Auth service error"
        }


def check_workflow_health() -> dict:
    """Verify an initial stage is loaded at the current definition version."""
    start_time = time.time()
    try:
        stages = db.session.query(WorkflowStage).filter_by(is_active=True).count()
        transitions = db.session.query(WorkflowTransition).filter_by(is_active=True).count()
        initial = db.session.query(WorkflowStage).filter_by(is_initial=True, is_active=True).first()

        elapsed_ms = (time.time() - start_time) * 1000
        details = {
            "active_stages": stages,
            "active_transitions": transitions,
            "loaded_version": initial.definition_version if initial else None,
            "expected_version": WORKFLOW_VERSION,
        }

        if not initial or initial.definition_version != WORKFLOW_VERSION:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Workflow not loaded at current version; run `flask workflow setup`",
                "details": details,
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Workflow health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Workflow error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "auth": check_auth_health(),
        "workflow": check_workflow_health(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
