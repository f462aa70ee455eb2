# Overview: Service-layer helpers that turn DB contention into Conflict errors.

"""
A failed COMMIT discards everything the service flushed, so it is never
retried on the (now empty) session: the failure surfaces as a 409
Conflict and the client repeats the whole request.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..extensions import db


def flush_or_conflict(label: str = "Record") -> None:
    """Flush pending writes; a stale versioned row raises Conflict."""
    try:
        db.session.flush()
    except StaleDataError as exc:
        raise Conflict(f"{label} was modified concurrently; reload and retry") from exc


def commit_or_conflict() -> None:
    """
    Commit the current unit of work.

    OperationalError (locks, deadlocks) and StaleDataError (optimistic
    locking on QC / warehouse records) roll back and raise Conflict.
    Domain errors propagate untouched.
    """
    try:
        db.session.commit()
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        current_app.logger.warning("Commit failed under contention: %s", exc.__class__.__name__)
        raise Conflict(
            "The change was not saved because of a concurrent update; retry the request",
            retryable=True,
        ) from exc
