# Overview: Append-only audit trail for state transitions.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent, SecurityEvent
from ..time_utils import utcnow

"""
Audit trail invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back change never leaves an audit row behind.
- before/after are small JSON snapshots, not full aggregates.
"""


def _dump(snapshot: Optional[dict]) -> Optional[str]:
    if snapshot is None:
        return None
    return json.dumps(snapshot, default=str, sort_keys=True)


def record_event(
    *,
    resource: str,
    resource_id: int,
    action: str,
    actor_user_id: int | None,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent:
    """Append one audit event and flush so it gets an id without committing."""
    ev = AuditEvent(
        resource=resource,
        resource_id=resource_id,
        action=action,
        actor_user_id=actor_user_id,
        before=_dump(before),
        after=_dump(after),
        note=note[:255] if note else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    *,
    resource: str | None = None,
    resource_id: int | None = None,
    actor_user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditEvent], int]:
    query = db.session.query(AuditEvent)
    if resource:
        query = query.filter(AuditEvent.resource == resource)
    if resource_id is not None:
        query = query.filter(AuditEvent.resource_id == resource_id)
    if actor_user_id is not None:
        query = query.filter(AuditEvent.actor_user_id == actor_user_id)

    total = query.count()
    rows = query.order_by(AuditEvent.id.desc()).offset(max(offset, 0)).limit(max(min(limit, 500), 1)).all()
    return rows, total


def list_security_events(
    *,
    event_type: str | None = None,
    user_id: int | None = None,
    success: bool | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[SecurityEvent], int]:
    query = db.session.query(SecurityEvent)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    if user_id is not None:
        query = query.filter(SecurityEvent.user_id == user_id)
    if success is not None:
        query = query.filter(SecurityEvent.success.is_(success))

    total = query.count()
    rows = query.order_by(SecurityEvent.id.desc()).offset(max(offset, 0)).limit(max(min(limit, 500), 1)).all()
    return rows, total
