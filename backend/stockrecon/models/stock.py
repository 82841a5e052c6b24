from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class StockLedgerRecord(db.Model):
    """
    On-hand quantity of one product in one branch.

    INVARIANTS:
    - Exactly one row per (product_id, branch_id): UniqueConstraint.
    - Rows are created lazily the first time an authorized adjustment touches
      a product in a branch with no prior record (prior quantity = 0).
    - The reconciliation engine only mutates rows inside the same atomic
      transaction that applies an adjustment request.

    version_id is an optimistic lock: two transactions that read the same row
    and both write it cannot both commit.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_ledger_product_branch"),
        db.Index("ix_stock_ledger_branch", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_threshold = db.Column(db.Integer, nullable=False, default=0)
    max_threshold = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockLedgerRecord product_id={self.product_id} "
            f"branch_id={self.branch_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "min_threshold": self.min_threshold,
            "max_threshold": self.max_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
