from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Control session status
SESSION_STATUS_IN_PROGRESS = "IN_PROGRESS"
SESSION_STATUS_FINALIZED = "FINALIZED"

# Control session scope
SESSION_SCOPE_FULL = "FULL"
SESSION_SCOPE_PARTIAL = "PARTIAL"

# Adjustment request status
REQUEST_STATUS_PENDING = "PENDING_AUTHORIZATION"
REQUEST_STATUS_AUTHORIZED = "AUTHORIZED"
REQUEST_STATUS_REJECTED = "REJECTED"


class ControlSession(db.Model):
    """
    One physical inventory count in one branch.

    LIFECYCLE:
    1. IN_PROGRESS: opened, products being counted on the floor
    2. FINALIZED: counted lines stored, discrepancies computed (terminal)

    CONCURRENCY:
    At most one IN_PROGRESS session per branch. Enforced by a partial unique
    index on branch_id, so the check-and-create in open_session is a
    conditional write rather than a read followed by an insert.

    adjustment_request_id is a plain back-reference (no FK) because the
    request also points at the session.
    """
    __tablename__ = "control_sessions"
    __table_args__ = (
        db.Index(
            "uq_control_sessions_branch_in_progress",
            "branch_id",
            unique=True,
            sqlite_where=db.text("status = 'IN_PROGRESS'"),
            postgresql_where=db.text("status = 'IN_PROGRESS'"),
        ),
        db.Index("ix_control_sessions_branch_started", "branch_id", "started_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    initiator_user_id = db.Column(db.Integer, nullable=False)

    # FULL or PARTIAL; PARTIAL may be narrowed to one category
    scope = db.Column(db.String(16), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_IN_PROGRESS, index=True)

    notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    adjustments_applied = db.Column(db.Boolean, nullable=False, default=False)
    adjustment_request_id = db.Column(db.Integer, nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    category = db.relationship("Category")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ControlSession id={self.id} branch_id={self.branch_id} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "initiator_user_id": self.initiator_user_id,
            "scope": self.scope,
            "category_id": self.category_id,
            "status": self.status,
            "notes": self.notes,
            "closing_notes": self.closing_notes,
            "started_at": to_utc_z(self.started_at),
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "adjustments_applied": self.adjustments_applied,
            "adjustment_request_id": self.adjustment_request_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["counted_lines"] = [line.to_dict() for line in self.counted_lines]
        return data


class ControlSessionLine(db.Model):
    """Counted quantity for one product, stored when the session is finalized."""
    __tablename__ = "control_session_lines"
    __table_args__ = (
        db.UniqueConstraint("session_id", "product_id", name="uq_control_session_lines_session_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("control_sessions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    session = db.relationship(
        "ControlSession",
        backref=db.backref("counted_lines", lazy=True, order_by="ControlSessionLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "product_id": self.product_id,
            "counted_quantity": self.counted_quantity,
            "note": self.note,
        }


class AdjustmentRequest(db.Model):
    """
    A batch of discrepancies awaiting administrator decision.

    LIFECYCLE:
    1. PENDING_AUTHORIZATION: submitted, waiting in the admin queue
    2. AUTHORIZED: deltas applied to the stock ledger and audited (terminal)
    3. REJECTED: discarded without touching the ledger (terminal)

    IMMUTABLE once decided: status and lines never change again.

    apply_started_at is set when a chunked apply begins. From then on the
    request can only be completed by Authorize, never rejected.
    """
    __tablename__ = "adjustment_requests"
    __table_args__ = (
        db.UniqueConstraint("control_session_id", name="uq_adjustment_requests_session"),
        db.Index("ix_adjustment_requests_branch_status", "branch_id", "status"),
        db.Index("ix_adjustment_requests_status_submitted", "status", "submitted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    control_session_id = db.Column(db.Integer, db.ForeignKey("control_sessions.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    requestor_user_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(32), nullable=False, default=REQUEST_STATUS_PENDING)
    notes = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    apply_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deciding_user_id = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    control_session = db.relationship("ControlSession")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_pending(self) -> bool:
        return self.status == REQUEST_STATUS_PENDING

    def __repr__(self) -> str:
        return f"<AdjustmentRequest id={self.id} branch_id={self.branch_id} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "control_session_id": self.control_session_id,
            "branch_id": self.branch_id,
            "requestor_user_id": self.requestor_user_id,
            "status": self.status,
            "notes": self.notes,
            "submitted_at": to_utc_z(self.submitted_at),
            "apply_started_at": to_utc_z(self.apply_started_at) if self.apply_started_at else None,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "deciding_user_id": self.deciding_user_id,
            "rejection_reason": self.rejection_reason,
            "line_count": len(self.lines),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class AdjustmentLine(db.Model):
    """
    One discrepancy: delta = counted_quantity - system_quantity.

    applied_at is the per-line idempotency marker. It is set in the same
    transaction that writes the ledger and the audit record for this line,
    so a retried apply skips lines that already committed.
    """
    __tablename__ = "adjustment_lines"
    __table_args__ = (
        db.UniqueConstraint("request_id", "product_id", name="uq_adjustment_lines_request_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("adjustment_requests.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    system_quantity = db.Column(db.Integer, nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=False)
    delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    request = db.relationship(
        "AdjustmentRequest",
        backref=db.backref("lines", lazy=True, order_by="AdjustmentLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "product_id": self.product_id,
            "system_quantity": self.system_quantity,
            "counted_quantity": self.counted_quantity,
            "delta": self.delta,
            "note": self.note,
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
