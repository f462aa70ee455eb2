# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    PURCHASING_PERMISSIONS,
    QUALITY_PERMISSIONS,
    WAREHOUSE_PERMISSIONS,
    INVENTORY_PERMISSIONS,
    WORKFLOW_PERMISSIONS,
    MASTER_DATA_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLES, DEFAULT_ROLE_PERMISSIONS
from .stage_assignments import STAGE_PERMISSION_ASSIGNMENTS
from .helpers import KNOWN_PERMISSION_CODES, validate_permission_code

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "PURCHASING_PERMISSIONS",
    "QUALITY_PERMISSIONS",
    "WAREHOUSE_PERMISSIONS",
    "INVENTORY_PERMISSIONS",
    "WORKFLOW_PERMISSIONS",
    "MASTER_DATA_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "STAGE_PERMISSION_ASSIGNMENTS",
    "KNOWN_PERMISSION_CODES",
    "validate_permission_code",
]
