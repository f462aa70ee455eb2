from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail: one row per state transition of any resource.

    Written in the same DB transaction as the change it records.
    `before`/`after` hold small JSON snapshots (status, stage, quantities),
    never the full aggregate.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_resource", "resource", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    resource = db.Column(db.String(64), nullable=False)  # purchase_order, quality_control, inventory, ...
    resource_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(64), nullable=False, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    before = db.Column(db.Text, nullable=True)
    after = db.Column(db.Text, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "before": json.loads(self.before) if self.before else None,
            "after": json.loads(self.after) if self.after else None,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating document numbers
    (purchase orders, QC records, warehouse approvals).
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
