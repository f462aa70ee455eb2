# Overview: Declarative (permission, stage, role) bootstrap table.
#
# Applied idempotently by `flask perms assign-stage` / `flask system init`
# (services/stage_permission_service.apply_stage_assignments). Each row grants
# the permission to every member of the role, but only while a purchase order
# is in the named stage.

STAGE_PERMISSION_ASSIGNMENTS = [
    ("PO_EDIT", "DRAFT", "procurement_officer"),
    ("PO_APPROVE_L1", "PENDING_APPROVAL_L1", "approver_l1"),
    ("PO_APPROVE_L2", "PENDING_APPROVAL_L2", "approver_l2"),
    ("PO_SEND", "APPROVED_FINAL", "procurement_officer"),
    ("PO_RECEIVE", "ORDERED", "warehouse_manager"),
    ("PO_RECEIVE", "PARTIAL_RECEIVED", "warehouse_manager"),
    ("PO_QC_CHECK", "RECEIVED", "warehouse_manager"),
    ("PO_QC_CHECK", "RECEIVED", "qc_manager"),
    ("PO_QC_APPROVE", "QC_PENDING", "qc_manager"),
    ("PO_COMPLETE", "QC_PASSED", "procurement_officer"),
    ("PO_QC_REJECT", "QC_FAILED", "procurement_officer"),
]
