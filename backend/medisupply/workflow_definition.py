# Overview: Versioned, declarative purchase-order workflow graph.

"""
Purchase-order workflow definition.

This table is the single source of truth for stages and transitions.
`services/workflow_service.load_workflow_definition()` validates it and
upserts it into workflow_stages / workflow_transitions; runtime code only
reads the database rows.

STAGE GRAPH (forward path):
    DRAFT -> PENDING_APPROVAL_L1 -> PENDING_APPROVAL_L2 -> APPROVED_FINAL
          -> ORDERED -> [PARTIAL_RECEIVED] -> RECEIVED -> QC_PENDING
          -> QC_PASSED -> COMPLETED
Side exits: CANCELLED (cancel/reject), QC_FAILED (QC reject).
Backward moves use the "return" action only.

Bump WORKFLOW_VERSION whenever the graph changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field


WORKFLOW_VERSION = "2024.1"

INITIAL_STAGE = "DRAFT"

# Actions allowed to move "backwards"; every other action must keep the
# graph acyclic.
BACKWARD_ACTIONS = frozenset({"return"})

# Actions valid in a stage that do not change it (handled outside the
# transition table, e.g. editing draft lines).
NON_TRANSITION_ACTIONS = frozenset({"edit"})


@dataclass(frozen=True)
class StageDef:
    code: str
    name: str
    sequence: int
    allowed_actions: tuple[str, ...]
    required_permissions: tuple[str, ...]
    description: str = ""
    is_terminal: bool = False


@dataclass(frozen=True)
class TransitionDef:
    from_stage: str
    action: str
    to_stage: str
    required_fields: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class WorkflowDefinition:
    version: str
    initial_stage: str
    stages: tuple[StageDef, ...]
    transitions: tuple[TransitionDef, ...]


STAGES: tuple[StageDef, ...] = (
    StageDef("DRAFT", "Draft", 1, ("edit", "submit", "cancel"), ("PO_VIEW", "PO_EDIT"),
             "Purchase order is being prepared"),
    StageDef("PENDING_APPROVAL_L1", "Pending Approval (L1)", 2, ("approve", "return", "reject"),
             ("PO_VIEW", "PO_APPROVE_L1"), "Awaiting first-level approval"),
    StageDef("PENDING_APPROVAL_L2", "Pending Approval (L2)", 3, ("approve", "return", "reject"),
             ("PO_VIEW", "PO_APPROVE_L2"), "Awaiting final approval"),
    StageDef("APPROVED_FINAL", "Approved", 4, ("send", "cancel"), ("PO_VIEW", "PO_SEND"),
             "Approved and ready to send to the principal"),
    StageDef("ORDERED", "Ordered", 5, ("receive_partial", "receive"), ("PO_VIEW", "PO_RECEIVE"),
             "Sent to the principal, awaiting goods"),
    StageDef("PARTIAL_RECEIVED", "Partially Received", 6, ("receive_partial", "receive", "qc_check"),
             ("PO_VIEW", "PO_RECEIVE"), "Some goods received"),
    StageDef("RECEIVED", "Received", 7, ("qc_check",), ("PO_VIEW", "PO_QC_CHECK"),
             "All goods received"),
    StageDef("QC_PENDING", "QC Pending", 8, ("approve", "reject"), ("PO_VIEW", "PO_QC_APPROVE"),
             "Goods under quality control"),
    StageDef("QC_PASSED", "QC Passed", 9, ("complete",), ("PO_VIEW", "PO_COMPLETE"),
             "Quality control passed"),
    StageDef("QC_FAILED", "QC Failed", 10, ("return", "reject"), ("PO_VIEW", "PO_QC_REJECT"),
             "Quality control failed"),
    StageDef("COMPLETED", "Completed", 11, (), (), "Purchase order closed", is_terminal=True),
    StageDef("CANCELLED", "Cancelled", 12, (), (), "Purchase order cancelled", is_terminal=True),
)


TRANSITIONS: tuple[TransitionDef, ...] = (
    TransitionDef("DRAFT", "submit", "PENDING_APPROVAL_L1"),
    TransitionDef("DRAFT", "cancel", "CANCELLED", ("remarks",)),
    TransitionDef("PENDING_APPROVAL_L1", "approve", "PENDING_APPROVAL_L2"),
    TransitionDef("PENDING_APPROVAL_L1", "return", "DRAFT", ("remarks",)),
    TransitionDef("PENDING_APPROVAL_L1", "reject", "CANCELLED", ("remarks",)),
    TransitionDef("PENDING_APPROVAL_L2", "approve", "APPROVED_FINAL"),
    TransitionDef("PENDING_APPROVAL_L2", "return", "PENDING_APPROVAL_L1", ("remarks",)),
    TransitionDef("PENDING_APPROVAL_L2", "reject", "CANCELLED", ("remarks",)),
    TransitionDef("APPROVED_FINAL", "send", "ORDERED"),
    TransitionDef("APPROVED_FINAL", "cancel", "CANCELLED", ("remarks",)),
    TransitionDef("ORDERED", "receive_partial", "PARTIAL_RECEIVED", ("products",)),
    TransitionDef("ORDERED", "receive", "RECEIVED", ("products",)),
    TransitionDef("PARTIAL_RECEIVED", "receive_partial", "PARTIAL_RECEIVED", ("products",)),
    TransitionDef("PARTIAL_RECEIVED", "receive", "RECEIVED", ("products",)),
    TransitionDef("PARTIAL_RECEIVED", "qc_check", "QC_PENDING"),
    TransitionDef("RECEIVED", "qc_check", "QC_PENDING"),
    TransitionDef("QC_PENDING", "approve", "QC_PASSED", ("qc_results",)),
    TransitionDef("QC_PENDING", "reject", "QC_FAILED", ("qc_results",)),
    TransitionDef("QC_PASSED", "complete", "COMPLETED"),
    TransitionDef("QC_FAILED", "return", "ORDERED", ("remarks",)),
    TransitionDef("QC_FAILED", "reject", "CANCELLED", ("remarks",)),
)


PURCHASE_ORDER_WORKFLOW = WorkflowDefinition(
    version=WORKFLOW_VERSION,
    initial_stage=INITIAL_STAGE,
    stages=STAGES,
    transitions=TRANSITIONS,
)
