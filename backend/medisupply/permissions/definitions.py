# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- PURCHASING --

PURCHASING_PERMISSIONS = [
    ("PO_VIEW", "View Purchase Orders", "View purchase orders and their workflow history", PermissionCategory.PURCHASING),
    ("PO_CREATE", "Create Purchase Orders", "Create purchase orders in the draft stage", PermissionCategory.PURCHASING),
    ("PO_EDIT", "Edit Purchase Orders", "Edit, submit or cancel draft purchase orders", PermissionCategory.PURCHASING),
    ("PO_DELETE", "Delete Purchase Orders", "Delete purchase orders that are still in draft", PermissionCategory.PURCHASING),
    ("PO_APPROVE_L1", "Approve Purchase Orders (L1)", "First-level approval, return or rejection", PermissionCategory.PURCHASING),
    ("PO_APPROVE_L2", "Approve Purchase Orders (L2)", "Final approval, return or rejection", PermissionCategory.PURCHASING),
    ("PO_SEND", "Send Purchase Orders", "Send approved purchase orders to the principal", PermissionCategory.PURCHASING),
    ("PO_RECEIVE", "Receive Purchase Orders", "Record full or partial receipt of ordered goods", PermissionCategory.PURCHASING),
    ("PO_QC_CHECK", "Send to QC", "Move received purchase orders into quality control", PermissionCategory.PURCHASING),
    ("PO_QC_APPROVE", "Record QC Outcome", "Pass or fail purchase orders at the QC stage", PermissionCategory.PURCHASING),
    ("PO_QC_REJECT", "Handle QC Failure", "Return or cancel purchase orders that failed QC", PermissionCategory.PURCHASING),
    ("PO_COMPLETE", "Complete Purchase Orders", "Close purchase orders after QC passed", PermissionCategory.PURCHASING),
    ("INVOICE_VIEW", "View Invoice Receivings", "View supplier invoices received against orders", PermissionCategory.PURCHASING),
    ("INVOICE_CREATE", "Record Invoice Receivings", "Record supplier invoices and received batches", PermissionCategory.PURCHASING),
]


# -- QUALITY --

QUALITY_PERMISSIONS = [
    ("QC_VIEW", "View QC Records", "View quality-control records and statistics", PermissionCategory.QUALITY),
    ("QC_CREATE", "Create QC Records", "Open QC inspections from invoice receivings", PermissionCategory.QUALITY),
    ("QC_INSPECT", "Inspect Items", "Record item-level inspection results and submit", PermissionCategory.QUALITY),
    ("QC_APPROVE", "Approve QC Records", "Approve or reject submitted QC records; edit any inspection", PermissionCategory.QUALITY),
]


# -- WAREHOUSE --

WAREHOUSE_PERMISSIONS = [
    ("WA_VIEW", "View Warehouse Approvals", "View warehouse approval records", PermissionCategory.WAREHOUSE),
    ("WA_CREATE", "Create Warehouse Approvals", "Open warehouse approvals from approved QC records", PermissionCategory.WAREHOUSE),
    ("WA_UPDATE", "Check Warehouse Lines", "Assign storage locations and accept/reject quantities", PermissionCategory.WAREHOUSE),
    ("WA_APPROVE", "Approve Warehouse Approvals", "Approve or reject submitted warehouse approvals", PermissionCategory.WAREHOUSE),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    ("INVENTORY_VIEW", "View Inventory", "View stock levels, movements, alerts and traceability", PermissionCategory.INVENTORY),
    ("INVENTORY_ADJUST", "Adjust Inventory", "Add, remove, adjust, write off and return stock", PermissionCategory.INVENTORY),
    ("INVENTORY_RESERVE", "Reserve Inventory", "Create, release and fulfil reservations", PermissionCategory.INVENTORY),
    ("INVENTORY_TRANSFER", "Transfer Inventory", "Move stock between warehouses or locations", PermissionCategory.INVENTORY),
    ("INVENTORY_UTILIZE", "Record Utilization", "Record consumption against hospital cases", PermissionCategory.INVENTORY),
    ("INVENTORY_MANAGE", "Manage Inventory Records", "Change thresholds, location, status; soft delete", PermissionCategory.INVENTORY),
    ("INVENTORY_RECONCILE", "Reconcile Inventory", "Replay failed warehouse approval postings", PermissionCategory.INVENTORY),
]


# -- WORKFLOW --

WORKFLOW_PERMISSIONS = [
    ("WORKFLOW_VIEW", "View Workflow", "View workflow stages, transitions and statistics", PermissionCategory.WORKFLOW),
    ("WORKFLOW_MANAGE", "Manage Workflow", "Assign and revoke stage-scoped permissions", PermissionCategory.WORKFLOW),
]


# -- MASTER DATA --

MASTER_DATA_PERMISSIONS = [
    ("MASTER_DATA_VIEW", "View Master Data", "View products, warehouses and principals", PermissionCategory.MASTER_DATA),
    ("MASTER_DATA_MANAGE", "Manage Master Data", "Create products, warehouses and principals", PermissionCategory.MASTER_DATA),
]


# -- USERS --

USER_PERMISSIONS = [
    ("CREATE_USER", "Create User", "Create user accounts", PermissionCategory.USERS),
    ("ASSIGN_ROLES", "Assign Roles", "Assign roles to users", PermissionCategory.USERS),
    ("MANAGE_PERMISSIONS", "Manage Permissions", "Grant and revoke role permissions and overrides", PermissionCategory.USERS),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    ("SYSTEM_ADMIN", "System Administration", "Full system access", PermissionCategory.SYSTEM),
    ("VIEW_AUDIT_LOG", "View Audit Log", "View audit and security events", PermissionCategory.SYSTEM),
]


PERMISSION_DEFINITIONS = (
    PURCHASING_PERMISSIONS
    + QUALITY_PERMISSIONS
    + WAREHOUSE_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + WORKFLOW_PERMISSIONS
    + MASTER_DATA_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
