# Overview: Atomic document-number allocation for POs, QC records and warehouse approvals.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


DOCUMENT_PREFIXES = {
    "PURCHASE_ORDER": "PO",
    "QUALITY_CONTROL": "QC",
    "WAREHOUSE_APPROVAL": "WA",
}


def next_document_number(*, document_type: str, pad: int = 5) -> str:
    """
    Atomically allocate the next document number for a type.

    Format: <PREFIX>-<YYYY>-<NNNNN>, e.g. PO-2024-00001. The counter is
    global per type (it does not reset yearly) so numbers stay unique.

    Runs inside the caller's transaction: the sequence increment commits or
    rolls back together with the document that uses it.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown document_type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first; increment it instead.
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate number for {document_type}")
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{utcnow().year}-{next_num:0{pad}d}"
