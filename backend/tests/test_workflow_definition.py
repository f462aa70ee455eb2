"""
Workflow definition tests.

Verifies:
- The shipped purchase-order graph validates cleanly
- Structural problems are reported (ambiguous actions, unreachable stages, cycles)
- Loading is idempotent and deactivates (never deletes) dropped transitions
- Stage-scoped permissions drive can_perform / allowed_actions_for
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from medisupply.errors import WorkflowConfigurationError
from medisupply.models import StagePermission, WorkflowStage, WorkflowTransition
from medisupply.services import stage_permission_service, workflow_service
from medisupply.time_utils import utcnow
from medisupply.workflow_definition import (
    PURCHASE_ORDER_WORKFLOW,
    StageDef,
    TransitionDef,
    WorkflowDefinition,
)


def _definition(stages=None, transitions=None, initial="DRAFT"):
    return WorkflowDefinition(
        version="test",
        initial_stage=initial,
        stages=tuple(stages if stages is not None else PURCHASE_ORDER_WORKFLOW.stages),
        transitions=tuple(transitions if transitions is not None else PURCHASE_ORDER_WORKFLOW.transitions),
    )


# =============================================================================
# VALIDATION (no database)
# =============================================================================


class TestValidateDefinition:

    def test_shipped_definition_is_valid(self):
        assert workflow_service.validate_definition(PURCHASE_ORDER_WORKFLOW) == []

    def test_ambiguous_action_is_rejected(self):
        transitions = PURCHASE_ORDER_WORKFLOW.transitions + (
            TransitionDef("DRAFT", "submit", "CANCELLED"),
        )
        problems = workflow_service.validate_definition(_definition(transitions=transitions))
        assert any("leads to both" in p for p in problems)

    def test_duplicate_sequence_is_rejected(self):
        stages = list(PURCHASE_ORDER_WORKFLOW.stages)
        stages[1] = replace(stages[1], sequence=stages[0].sequence)
        problems = workflow_service.validate_definition(_definition(stages=stages))
        assert any("reuses sequence" in p for p in problems)

    def test_unknown_permission_is_rejected(self):
        stages = list(PURCHASE_ORDER_WORKFLOW.stages)
        stages[0] = replace(stages[0], required_permissions=("PO_VIEW", "NOT_A_PERMISSION"))
        problems = workflow_service.validate_definition(_definition(stages=stages))
        assert any("NOT_A_PERMISSION" in p for p in problems)

    def test_unreachable_stage_is_reported(self):
        stages = PURCHASE_ORDER_WORKFLOW.stages + (
            StageDef("ORPHAN", "Orphan", 99, (), (), is_terminal=True),
        )
        problems = workflow_service.validate_definition(_definition(stages=stages))
        assert "Stage ORPHAN is unreachable from DRAFT" in problems

    def test_forward_cycle_is_rejected(self):
        stages = list(PURCHASE_ORDER_WORKFLOW.stages)
        idx = next(i for i, s in enumerate(stages) if s.code == "PENDING_APPROVAL_L1")
        stages[idx] = replace(stages[idx], allowed_actions=stages[idx].allowed_actions + ("rework",))
        transitions = PURCHASE_ORDER_WORKFLOW.transitions + (
            TransitionDef("PENDING_APPROVAL_L1", "rework", "DRAFT"),
        )
        problems = workflow_service.validate_definition(_definition(stages=stages, transitions=transitions))
        assert any("cycle" in p for p in problems)

    def test_allowed_action_without_transition_is_reported(self):
        transitions = [t for t in PURCHASE_ORDER_WORKFLOW.transitions
                       if not (t.from_stage == "APPROVED_FINAL" and t.action == "cancel")]
        problems = workflow_service.validate_definition(_definition(transitions=transitions))
        assert "Action cancel allowed in APPROVED_FINAL has no transition" in problems

    def test_missing_initial_stage(self):
        problems = workflow_service.validate_definition(_definition(initial="NOPE"))
        assert "Initial stage NOPE is not defined" in problems


# =============================================================================
# LOADING
# =============================================================================


class TestLoadDefinition:

    def test_load_creates_stages_and_transitions(self, seed):
        stages = workflow_service.list_stages()
        assert [s.code for s in stages][0] == "DRAFT"
        assert len(stages) == len(PURCHASE_ORDER_WORKFLOW.stages)
        assert len(workflow_service.list_transitions()) == len(PURCHASE_ORDER_WORKFLOW.transitions)
        assert workflow_service.get_initial_stage().code == "DRAFT"

    def test_reload_is_idempotent(self, seed):
        stats = workflow_service.load_workflow_definition()
        assert stats["stages_created"] == 0
        assert stats["transitions_created"] == 0
        assert stats["transitions_deactivated"] == 0

    def test_dropped_transition_is_deactivated(self, seed, db_session):
        transitions = [t for t in PURCHASE_ORDER_WORKFLOW.transitions
                       if not (t.from_stage == "QC_FAILED" and t.action == "reject")]
        stages = [
            replace(s, allowed_actions=("return",)) if s.code == "QC_FAILED" else s
            for s in PURCHASE_ORDER_WORKFLOW.stages
        ]
        stats = workflow_service.load_workflow_definition(_definition(stages=stages, transitions=transitions))
        assert stats["transitions_deactivated"] == 1

        qc_failed = workflow_service.get_stage_by_code("QC_FAILED")
        row = db_session.query(WorkflowTransition).filter_by(from_stage_id=qc_failed.id, action="reject").one()
        assert row.is_active is False
        assert workflow_service.find_transition(qc_failed.id, "reject") is None

    def test_invalid_definition_leaves_database_untouched(self, seed, db_session):
        before = db_session.query(WorkflowStage).count()
        bad = _definition(transitions=PURCHASE_ORDER_WORKFLOW.transitions + (
            TransitionDef("DRAFT", "submit", "CANCELLED"),
        ))
        with pytest.raises(WorkflowConfigurationError) as exc:
            workflow_service.load_workflow_definition(bad)
        assert exc.value.problems
        assert db_session.query(WorkflowStage).count() == before

    def test_visualize_marks_backward_edges(self, seed):
        graph = workflow_service.visualize()
        returns = [e for e in graph["edges"] if e["action"] == "return"]
        assert returns and all(e["backward"] for e in returns)
        assert graph["mermaid"].startswith("graph TD")


# =============================================================================
# STAGE-SCOPED AUTHORIZATION
# =============================================================================


class TestCanPerform:

    def test_stage_grant_applies_only_in_its_stage(self, users, make_po):
        po = make_po()
        officer = users["procurement_officer"]
        approver = users["approver_l1"]

        assert workflow_service.can_perform(officer, po, "submit") is True
        assert workflow_service.can_perform(approver, po, "submit") is False
        assert workflow_service.allowed_actions_for(officer, po) == ["edit", "submit", "cancel"]
        assert workflow_service.allowed_actions_for(approver, po) == []

    def test_action_not_listed_fails_closed(self, users, make_po):
        po = make_po()
        assert workflow_service.can_perform(users["admin"], po, "approve") is False

    def test_inactive_user_is_denied(self, users, make_po, db_session):
        po = make_po()
        officer = users["procurement_officer"]
        officer.is_active = False
        db_session.commit()
        assert workflow_service.can_perform(officer, po, "submit") is False

    def test_user_scoped_grant(self, users, make_po, db_session):
        po = make_po()
        viewer = users["viewer"]
        assert workflow_service.can_perform(viewer, po, "submit") is False

        stage_permission_service.assign_stage_permission(
            stage_code="DRAFT", permission_code="PO_EDIT", user_id=viewer.id,
        )
        db_session.commit()
        assert workflow_service.can_perform(viewer, po, "submit") is True

    def test_expired_grant_is_ignored(self, users, make_po, db_session):
        po = make_po()
        viewer = users["viewer"]
        grant = stage_permission_service.assign_stage_permission(
            stage_code="DRAFT", permission_code="PO_EDIT", user_id=viewer.id,
            expires_at=utcnow() + timedelta(hours=1),
        )
        db_session.commit()
        assert workflow_service.can_perform(viewer, po, "submit") is True

        grant.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        assert workflow_service.can_perform(viewer, po, "submit") is False

    def test_deny_override_beats_stage_grant(self, users, make_po):
        from medisupply.services import permission_service

        po = make_po()
        officer = users["procurement_officer"]
        permission_service.grant_permission_override(
            user_id=officer.id, permission_code="PO_EDIT", granted_by_user_id=users["admin"].id,
            override_type="DENY", reason="on leave",
        )
        assert workflow_service.can_perform(officer, po, "submit") is False
        assert workflow_service.stage_permission_gap(officer.id, po.current_stage) == ["PO_EDIT"]

        permission_service.revoke_permission_override(
            user_id=officer.id, permission_code="PO_EDIT", revoked_by_user_id=users["admin"].id,
        )
        assert workflow_service.can_perform(officer, po, "submit") is True

    def test_grant_needs_exactly_one_subject(self, seed):
        from medisupply.errors import ValidationError

        with pytest.raises(ValidationError):
            stage_permission_service.assign_stage_permission(stage_code="DRAFT", permission_code="PO_EDIT")

    def test_reassigning_reactivates_row(self, users, db_session):
        viewer = users["viewer"]
        first = stage_permission_service.assign_stage_permission(
            stage_code="DRAFT", permission_code="PO_EDIT", user_id=viewer.id,
        )
        stage_permission_service.revoke_stage_permission(first.id)
        again = stage_permission_service.assign_stage_permission(
            stage_code="DRAFT", permission_code="PO_EDIT", user_id=viewer.id,
        )
        db_session.commit()
        assert again.id == first.id
        assert again.is_active is True
        assert db_session.query(StagePermission).filter_by(user_id=viewer.id).count() == 1
