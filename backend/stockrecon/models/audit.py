from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class AuditRecord(db.Model):
    """
    Append-only evidence of one applied adjustment line.

    - Never updated or deleted.
    - Written inside the same DB transaction that mutates the stock ledger,
      so it never reflects an uncommitted or rejected adjustment.
    - adjustment_line_id is unique: a line can be applied (and audited) once.
    """
    __tablename__ = "audit_records"
    __table_args__ = (
        db.UniqueConstraint("adjustment_line_id", name="uq_audit_records_line"),
        db.Index("ix_audit_records_product_branch", "product_id", "branch_id", "applied_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_request_id = db.Column(
        db.Integer, db.ForeignKey("adjustment_requests.id"), nullable=False, index=True
    )
    adjustment_line_id = db.Column(db.Integer, db.ForeignKey("adjustment_lines.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    deciding_user_id = db.Column(db.Integer, nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<AuditRecord id={self.id} request={self.adjustment_request_id} "
            f"product={self.product_id} {self.quantity_before}->{self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adjustment_request_id": self.adjustment_request_id,
            "adjustment_line_id": self.adjustment_line_id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "deciding_user_id": self.deciding_user_id,
            "applied_at": to_utc_z(self.applied_at),
        }
