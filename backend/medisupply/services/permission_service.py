# Overview: Service-layer operations for permission; role grants, overrides and security events.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and create audit trail.
Every permission denial is logged for security monitoring.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- Global role grants live here; stage-scoped grants live in
  stage_permission_service.py and are merged by workflow_service.can_perform
"""

from ..errors import Forbidden
from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent, UserPermissionOverride
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS
from ..time_utils import utcnow


# Admin-level permissions cannot be altered by per-user overrides.
PROTECTED_PERMISSIONS = {
    "SYSTEM_ADMIN",
    "MANAGE_PERMISSIONS",
}


class PermissionDeniedError(Forbidden):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    *,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - STAGE_ACTION_DENIED
    - LOGIN_FAILED
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return event


def get_user_role_ids(user_id: int) -> set[int]:
    return {
        role_id
        for (role_id,) in db.session.query(UserRole.role_id).filter_by(user_id=user_id).all()
    }


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all global permission codes for a user.

    Union of the user's role permissions, then per-user GRANT/DENY
    overrides applied on top. Stage-scoped grants are not included.
    """
    permission_codes: set[str] = set()

    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    for (code,) in rows:
        permission_codes.add(code)

    overrides = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        is_active=True,
    ).all()

    for override in overrides:
        # Never allow overrides to change protected permissions
        if override.permission_code in PROTECTED_PERMISSIONS:
            continue
        if override.override_type == "GRANT":
            permission_codes.add(override.permission_code)
        elif override.override_type == "DENY":
            permission_codes.discard(override.permission_code)

    return permission_codes


def user_has_permission(user_id: int, permission_code: str) -> bool:
    """Check if user has a specific global permission."""
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Denials are logged to security_events.
    """
    if not user_has_permission(user_id, permission_code):
        log_security_event(
            user_id=user_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=permission_code,
            reason=f"Missing permission: {permission_code}",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise PermissionDeniedError(
            f"Permission denied: {permission_code}", required_permission=permission_code
        )


def grant_permission_override(
    *,
    user_id: int,
    permission_code: str,
    granted_by_user_id: int | None,
    override_type: str,
    reason: str | None = None,
) -> UserPermissionOverride:
    """
    Grant or deny a permission via per-user override.

    override_type must be "GRANT" or "DENY".
    """
    if permission_code in PROTECTED_PERMISSIONS:
        raise ValueError("Permission overrides cannot modify admin permissions")

    if override_type not in {"GRANT", "DENY"}:
        raise ValueError("override_type must be GRANT or DENY")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
    ).first()

    if override:
        override.override_type = override_type
        override.granted_by_user_id = granted_by_user_id
        override.granted_at = utcnow()
        override.reason = reason
        override.is_active = True
        override.revoked_by_user_id = None
        override.revoked_at = None
    else:
        override = UserPermissionOverride(
            user_id=user_id,
            permission_code=permission_code,
            override_type=override_type,
            granted_by_user_id=granted_by_user_id,
            granted_at=utcnow(),
            reason=reason,
            is_active=True,
        )
        db.session.add(override)

    db.session.commit()
    return override


def revoke_permission_override(
    *,
    user_id: int,
    permission_code: str,
    revoked_by_user_id: int | None,
) -> UserPermissionOverride | None:
    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
        is_active=True,
    ).first()

    if not override:
        return None

    override.is_active = False
    override.revoked_by_user_id = revoked_by_user_id
    override.revoked_at = utcnow()

    db.session.commit()
    return override


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Initialize all permission definitions in database.

    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()

        if not existing:
            db.session.add(Permission(
                code=code,
                name=name,
                description=description,
                category=category
            ))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Assign default permissions to roles based on DEFAULT_ROLE_PERMISSIONS.

    Idempotent: Safe to run multiple times (skips existing).
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()

        if not role:
            continue

        for permission_code in permission_codes:
            permission = db.session.query(Permission).filter_by(code=permission_code).first()

            if not permission:
                continue

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id
            ).first()

            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count


def grant_permission_to_role(role_name: str, permission_code: str) -> RolePermission:
    """Grant a permission to a role."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    existing = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()

    if existing:
        return existing

    role_permission = RolePermission(role_id=role.id, permission_id=permission.id)
    db.session.add(role_permission)
    db.session.commit()

    return role_permission


def revoke_permission_from_role(role_name: str, permission_code: str) -> bool:
    """Revoke a permission from a role."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    role_permission = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()

    if role_permission:
        db.session.delete(role_permission)
        db.session.commit()
        return True

    return False
