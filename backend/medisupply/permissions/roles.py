# Overview: Default roles and their global (not stage-scoped) permission sets.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full system access"),
    ("procurement_officer", "Raises, sends and closes purchase orders"),
    ("approver_l1", "First-level purchase order approval"),
    ("approver_l2", "Final purchase order approval"),
    ("qc_inspector", "Inspects received batches"),
    ("qc_manager", "Approves or rejects QC inspections"),
    ("warehouse_manager", "Receives goods and approves storage"),
    ("inventory_clerk", "Day-to-day stock operations"),
    ("viewer", "Read-only access"),
]


_VIEW_ONLY = [
    "PO_VIEW",
    "INVOICE_VIEW",
    "QC_VIEW",
    "WA_VIEW",
    "INVENTORY_VIEW",
    "WORKFLOW_VIEW",
    "MASTER_DATA_VIEW",
]


# Non-admin roles receive workflow action permissions (PO_EDIT, PO_APPROVE_L1,
# PO_SEND, ...) per stage through STAGE_PERMISSION_ASSIGNMENTS, not here.
DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "procurement_officer": [
        "PO_VIEW",
        "PO_CREATE",
        "PO_DELETE",
        "INVOICE_VIEW",
        "INVOICE_CREATE",
        "INVENTORY_VIEW",
        "WORKFLOW_VIEW",
        "MASTER_DATA_VIEW",
    ],
    "approver_l1": ["PO_VIEW", "WORKFLOW_VIEW", "MASTER_DATA_VIEW"],
    "approver_l2": ["PO_VIEW", "WORKFLOW_VIEW", "MASTER_DATA_VIEW"],
    "qc_inspector": ["PO_VIEW", "INVOICE_VIEW", "QC_VIEW", "QC_CREATE", "QC_INSPECT"],
    "qc_manager": ["PO_VIEW", "INVOICE_VIEW", "QC_VIEW", "QC_CREATE", "QC_INSPECT", "QC_APPROVE"],
    "warehouse_manager": [
        "PO_VIEW",
        "INVOICE_VIEW",
        "INVOICE_CREATE",
        "QC_VIEW",
        "WA_VIEW",
        "WA_CREATE",
        "WA_UPDATE",
        "WA_APPROVE",
        "INVENTORY_VIEW",
        "INVENTORY_RECONCILE",
    ],
    "inventory_clerk": [
        "INVENTORY_VIEW",
        "INVENTORY_ADJUST",
        "INVENTORY_RESERVE",
        "INVENTORY_TRANSFER",
        "INVENTORY_UTILIZE",
        "INVENTORY_MANAGE",
        "MASTER_DATA_VIEW",
    ],
    "viewer": list(_VIEW_ONLY),
}
