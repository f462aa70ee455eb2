# Overview: Stage-scoped permission assignments (per user or per role).

from __future__ import annotations

from datetime import datetime

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Role, StagePermission, User, WorkflowStage
from ..permissions import STAGE_PERMISSION_ASSIGNMENTS, validate_permission_code
from ..time_utils import utcnow


def _get_stage(stage_code: str) -> WorkflowStage:
    stage = db.session.query(WorkflowStage).filter_by(code=stage_code).first()
    if not stage:
        raise NotFound(f"Workflow stage {stage_code} not found")
    return stage


def active_stage_permission_codes(user_id: int, stage_id: int, role_ids: set[int]) -> set[str]:
    """
    Permission codes granted to a user at one stage.

    Includes user-scoped rows and rows for any of the user's roles; skips
    inactive or expired assignments.
    """
    now = utcnow()
    subject = StagePermission.user_id == user_id
    if role_ids:
        subject = db.or_(subject, StagePermission.role_id.in_(role_ids))

    rows = (
        db.session.query(StagePermission.permission_code)
        .filter(
            StagePermission.stage_id == stage_id,
            StagePermission.is_active.is_(True),
            db.or_(StagePermission.expires_at.is_(None), StagePermission.expires_at > now),
            subject,
        )
        .all()
    )
    return {code for (code,) in rows}


def assign_stage_permission(
    *,
    stage_code: str,
    permission_code: str,
    user_id: int | None = None,
    role_name: str | None = None,
    expires_at: datetime | None = None,
    assigned_by_user_id: int | None = None,
) -> StagePermission:
    """
    Grant a permission at one stage to a user or a role (exactly one).

    Re-activates an existing matching row instead of duplicating it.
    Flushes only; the caller commits.
    """
    if (user_id is None) == (role_name is None):
        raise ValidationError("Provide exactly one of user_id or role_name")
    if not validate_permission_code(permission_code):
        raise ValidationError(f"Unknown permission: {permission_code}")
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError("expires_at must be in the future")

    stage = _get_stage(stage_code)

    role_id = None
    if role_name is not None:
        role = db.session.query(Role).filter_by(name=role_name).first()
        if not role:
            raise NotFound(f"Role {role_name} not found")
        role_id = role.id
    elif db.session.get(User, user_id) is None:
        raise NotFound(f"User {user_id} not found")

    existing = db.session.query(StagePermission).filter_by(
        stage_id=stage.id,
        permission_code=permission_code,
        user_id=user_id,
        role_id=role_id,
    ).first()

    if existing:
        existing.is_active = True
        existing.expires_at = expires_at
        existing.assigned_by_user_id = assigned_by_user_id
        existing.assigned_at = utcnow()
        db.session.flush()
        return existing

    assignment = StagePermission(
        stage_id=stage.id,
        permission_code=permission_code,
        user_id=user_id,
        role_id=role_id,
        expires_at=expires_at,
        assigned_by_user_id=assigned_by_user_id,
        assigned_at=utcnow(),
    )
    db.session.add(assignment)
    db.session.flush()
    return assignment


def revoke_stage_permission(assignment_id: int) -> StagePermission:
    assignment = db.session.get(StagePermission, assignment_id)
    if not assignment:
        raise NotFound(f"Stage permission {assignment_id} not found")
    assignment.is_active = False
    db.session.flush()
    return assignment


def list_stage_permissions(*, stage_code: str | None = None, user_id: int | None = None) -> list[StagePermission]:
    query = db.session.query(StagePermission).filter(StagePermission.is_active.is_(True))
    if stage_code:
        query = query.filter(StagePermission.stage_id == _get_stage(stage_code).id)
    if user_id is not None:
        query = query.filter(StagePermission.user_id == user_id)
    return query.order_by(StagePermission.id).all()


def apply_stage_assignments(assignments=STAGE_PERMISSION_ASSIGNMENTS) -> int:
    """
    Apply the declarative (permission, stage, role) table.

    Idempotent: existing rows are left untouched. Rows naming a role or stage
    that does not exist yet are skipped. Returns the number created.
    """
    created = 0
    for permission_code, stage_code, role_name in assignments:
        stage = db.session.query(WorkflowStage).filter_by(code=stage_code).first()
        role = db.session.query(Role).filter_by(name=role_name).first()
        if not stage or not role:
            continue

        existing = db.session.query(StagePermission).filter_by(
            stage_id=stage.id,
            permission_code=permission_code,
            role_id=role.id,
            user_id=None,
        ).first()
        if existing:
            continue

        db.session.add(StagePermission(
            stage_id=stage.id,
            permission_code=permission_code,
            role_id=role.id,
            assigned_at=utcnow(),
        ))
        created += 1

    db.session.commit()
    return created
