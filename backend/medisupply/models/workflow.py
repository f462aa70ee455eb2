from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class WorkflowStage(db.Model):
    """
    A named state in the purchase-order workflow.

    Written only by the workflow loader (see services/workflow_service.py);
    read-only at runtime. `next_stages` is derived from the active outgoing
    transitions and is never stored.
    """
    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.UniqueConstraint("sequence", name="uq_workflow_stages_sequence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sequence = db.Column(db.Integer, nullable=False)

    allowed_actions = db.Column(db.JSON, nullable=False, default=list)
    required_permissions = db.Column(db.JSON, nullable=False, default=list)

    is_initial = db.Column(db.Boolean, nullable=False, default=False)
    is_terminal = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Version of the declarative definition that last wrote this row
    definition_version = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def status_value(self) -> str:
        """Lower-case mirror stored on PurchaseOrder.status."""
        return self.code.lower()

    @property
    def next_stages(self) -> list["WorkflowStage"]:
        seen: dict[int, WorkflowStage] = {}
        for transition in self.outgoing_transitions:
            if transition.is_active and transition.to_stage_id not in seen:
                seen[transition.to_stage_id] = transition.to_stage
        return sorted(seen.values(), key=lambda s: s.sequence)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "sequence": self.sequence,
            "allowed_actions": list(self.allowed_actions or []),
            "required_permissions": list(self.required_permissions or []),
            "next_stages": [s.code for s in self.next_stages],
            "is_initial": self.is_initial,
            "is_terminal": self.is_terminal,
            "is_active": self.is_active,
            "definition_version": self.definition_version,
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkflowTransition(db.Model):
    """
    Permission-gated move from one stage to another triggered by an action.

    Upserts key on (from_stage, to_stage, action). The loader additionally
    guarantees a single active to_stage per (from_stage, action).
    """
    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.UniqueConstraint("from_stage_id", "to_stage_id", "action", name="uq_workflow_transition_triple"),
        db.Index("ix_workflow_transitions_lookup", "from_stage_id", "action", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    to_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    required_fields = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    definition_version = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    from_stage = db.relationship(
        "WorkflowStage",
        foreign_keys=[from_stage_id],
        backref=db.backref("outgoing_transitions", lazy=True),
    )
    to_stage = db.relationship("WorkflowStage", foreign_keys=[to_stage_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_stage": self.from_stage.code if self.from_stage else None,
            "to_stage": self.to_stage.code if self.to_stage else None,
            "action": self.action,
            "required_fields": list(self.required_fields or []),
            "is_active": self.is_active,
            "definition_version": self.definition_version,
        }


class StagePermission(db.Model):
    """
    Stage-scoped permission assignment.

    Grants `permission_code` to a user (user_id) or to every member of a
    role (role_id) only while a purchase order sits in `stage_id`.
    Exactly one of user_id / role_id is set.
    """
    __tablename__ = "stage_permissions"
    __table_args__ = (
        db.CheckConstraint(
            "(user_id IS NULL) <> (role_id IS NULL)",
            name="ck_stage_permissions_single_subject",
        ),
        db.UniqueConstraint("stage_id", "permission_code", "user_id", "role_id", name="uq_stage_permission"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    permission_code = db.Column(db.String(64), nullable=False, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    stage = db.relationship("WorkflowStage", backref=db.backref("stage_permissions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage": self.stage.code if self.stage else None,
            "permission_code": self.permission_code,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "is_active": self.is_active,
            "expires_at": to_utc_z(self.expires_at),
            "assigned_by_user_id": self.assigned_by_user_id,
            "assigned_at": to_utc_z(self.assigned_at),
        }
