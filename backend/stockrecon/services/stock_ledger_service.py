# Overview: Stock Ledger access layer; reads on-hand quantities and applies deltas inside a caller's transaction.

from __future__ import annotations

"""
Stock Ledger Invariants (authoritative)

- One StockLedgerRecord per (product_id, branch_id).
- A missing record means a quantity of zero.
- apply_delta never commits: it runs inside the transaction that applies an
  adjustment request, so the ledger write, the audit record and the request
  status flip are indivisible.
- First touch of a product in a branch is an upsert with catalog defaults,
  inside that same transaction, never a separate prior step.
"""

from ..extensions import db
from ..models import StockLedgerRecord
from . import catalog_service
from .concurrency import lock_for_update
from ..time_utils import utcnow


def get_record(product_id: int, branch_id: int) -> StockLedgerRecord | None:
    return db.session.query(StockLedgerRecord).filter_by(
        product_id=product_id, branch_id=branch_id
    ).first()


def get_quantity(product_id: int, branch_id: int) -> int:
    record = get_record(product_id, branch_id)
    return record.quantity if record else 0


def get_quantities(branch_id: int, product_ids) -> dict[int, int]:
    """
    Current quantity for each requested product in a branch.

    Products with no ledger record are reported as 0.
    """
    ids = list(set(product_ids))
    if not ids:
        return {}

    rows = db.session.query(StockLedgerRecord.product_id, StockLedgerRecord.quantity).filter(
        StockLedgerRecord.branch_id == branch_id,
        StockLedgerRecord.product_id.in_(ids),
    ).all()

    found = {product_id: quantity for product_id, quantity in rows}
    return {product_id: found.get(product_id, 0) for product_id in ids}


def list_branch_stock(branch_id: int) -> list[StockLedgerRecord]:
    return db.session.query(StockLedgerRecord).filter_by(
        branch_id=branch_id
    ).order_by(StockLedgerRecord.product_id.asc()).all()


def apply_delta(product_id: int, branch_id: int, delta: int) -> tuple[int, int]:
    """
    Read-then-write one ledger record within the current transaction.

    Returns (quantity_before, quantity_after). Creates the record with the
    catalog's default thresholds when absent. Raises NotFoundError if the
    product is not in the catalog.
    """
    record = lock_for_update(
        db.session.query(StockLedgerRecord).filter_by(product_id=product_id, branch_id=branch_id)
    ).first()

    if record is None:
        min_threshold, max_threshold = catalog_service.default_thresholds(product_id)
        record = StockLedgerRecord(
            product_id=product_id,
            branch_id=branch_id,
            quantity=delta,
            min_threshold=min_threshold,
            max_threshold=max_threshold,
        )
        db.session.add(record)
        db.session.flush()
        return 0, delta

    quantity_before = record.quantity
    record.quantity = quantity_before + delta
    record.updated_at = utcnow()
    db.session.flush()  # optimistic version check happens here
    return quantity_before, record.quantity
