# Overview: Audit Trail; append-only record of every applied adjustment line.

from __future__ import annotations

from ..extensions import db
from ..models import AuditRecord
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates, no deletes.
- Records are written inside the same DB transaction as the ledger mutation
  they describe, so readers never see an uncommitted or rejected adjustment.
- One record per adjustment line (unique adjustment_line_id).
"""


def append_audit_record(
    *,
    adjustment_request_id: int,
    adjustment_line_id: int,
    product_id: int,
    branch_id: int,
    quantity_before: int,
    quantity_after: int,
    deciding_user_id: int,
) -> AuditRecord:
    record = AuditRecord(
        adjustment_request_id=adjustment_request_id,
        adjustment_line_id=adjustment_line_id,
        product_id=product_id,
        branch_id=branch_id,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        deciding_user_id=deciding_user_id,
    )
    db.session.add(record)
    db.session.flush()  # ensures record.id is assigned without committing
    return record


def query_by_product(product_id: int, branch_id: int | None = None) -> list[AuditRecord]:
    """Audit history of one product, newest first, optionally within one branch."""
    query = db.session.query(AuditRecord).filter_by(product_id=product_id)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    return query.order_by(AuditRecord.applied_at.desc(), AuditRecord.id.desc()).all()


def query_by_request(adjustment_request_id: int) -> list[AuditRecord]:
    return db.session.query(AuditRecord).filter_by(
        adjustment_request_id=adjustment_request_id
    ).order_by(AuditRecord.id.asc()).all()
