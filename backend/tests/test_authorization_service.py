"""
Authorization engine tests.

Verifies:
- Authorize applies every delta to the ledger exactly once, with audit records
- First touch of a product in a branch creates its ledger record with catalog thresholds
- Concurrent deciders: exactly one wins, the other gets AlreadyDecidedError
- Reject writes nothing to the ledger or the audit trail
- A store failure mid-apply leaves no partial state and is safe to retry
- Chunked apply resumes after a partial failure without double-applying
"""

import pytest
from sqlalchemy.exc import OperationalError

from conftest import ADMIN_ID, CLERK_ID, OTHER_ADMIN_ID
from stockrecon.extensions import db
from stockrecon.models import AuditRecord, ControlSession, Product, StockLedgerRecord
from stockrecon.services import (
    adjustment_request_service,
    audit_service,
    authorization_service,
    stock_ledger_service,
)
from stockrecon.services.errors import (
    AlreadyDecidedError,
    InvalidStateError,
    NotFoundError,
    TransientStoreError,
)


def _store_locked(*args, **kwargs):
    raise OperationalError("UPDATE stock_ledger", {}, Exception("database is locked"))


def _audit_count(request_id=None):
    query = db.session.query(AuditRecord)
    if request_id is not None:
        query = query.filter_by(adjustment_request_id=request_id)
    return query.count()


@pytest.fixture
def pending_request(branch, products, set_stock, finalize_count):
    """COLA 10 -> counted 7, WATER unstocked -> counted 4."""
    cola, water, _ = products
    set_stock(cola, branch, 10)
    session = finalize_count(branch, [(cola, 7), (water, 4)])
    return adjustment_request_service.get_request(session.adjustment_request_id)


# =============================================================================
# AUTHORIZE
# =============================================================================


class TestAuthorize:

    def test_authorize_applies_deltas_and_audits(self, branch, products, pending_request):
        cola, water, _ = products

        request = authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        assert request.status == "AUTHORIZED"
        assert request.deciding_user_id == ADMIN_ID
        assert request.decided_at is not None
        assert all(line.applied_at is not None for line in request.lines)

        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 7
        assert stock_ledger_service.get_quantity(water.id, branch.id) == 4

        records = audit_service.query_by_request(request.id)
        assert [(r.product_id, r.quantity_before, r.quantity_after, r.deciding_user_id) for r in records] == [
            (cola.id, 10, 7, ADMIN_ID),
            (water.id, 0, 4, ADMIN_ID),
        ]

        session = db.session.get(ControlSession, request.control_session_id)
        assert session.adjustments_applied is True

    def test_first_touch_creates_record_with_catalog_thresholds(self, branch, products, pending_request):
        water = products[1]

        authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        record = stock_ledger_service.get_record(water.id, branch.id)
        assert record.quantity == 4
        assert record.min_threshold == 10
        assert record.max_threshold == 80

    def test_ledger_may_go_negative(self, branch, products, pending_request):
        cola = products[0]
        # Sales happened between the count and the decision
        stock_ledger_service.get_record(cola.id, branch.id).quantity = 1
        db.session.commit()

        authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        assert stock_ledger_service.get_quantity(cola.id, branch.id) == -2
        record = audit_service.query_by_product(cola.id, branch_id=branch.id)[0]
        assert (record.quantity_before, record.quantity_after) == (1, -2)

    def test_authorize_twice_is_already_decided(self, branch, products, pending_request):
        authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        with pytest.raises(AlreadyDecidedError):
            authorization_service.authorize_request(pending_request.id, OTHER_ADMIN_ID)

        assert stock_ledger_service.get_quantity(products[0].id, branch.id) == 7
        assert _audit_count(pending_request.id) == 2

    def test_concurrent_authorize_applies_once(self, branch, products, pending_request, monkeypatch):
        """A second administrator decides between our pending check and our claim."""
        original = authorization_service._ensure_pending
        raced = []

        def racing_check(request):
            original(request)
            if not raced:
                raced.append(True)
                authorization_service.authorize_request(request.id, OTHER_ADMIN_ID)

        monkeypatch.setattr(authorization_service, "_ensure_pending", racing_check)

        with pytest.raises(AlreadyDecidedError):
            authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        request = adjustment_request_service.get_request(pending_request.id)
        assert request.status == "AUTHORIZED"
        assert request.deciding_user_id == OTHER_ADMIN_ID
        assert stock_ledger_service.get_quantity(products[0].id, branch.id) == 7
        assert stock_ledger_service.get_quantity(products[1].id, branch.id) == 4
        assert _audit_count(pending_request.id) == 2

    def test_unknown_request(self, db_session):
        with pytest.raises(NotFoundError):
            authorization_service.authorize_request(31337, ADMIN_ID)

    def test_product_removed_from_catalog_applies_nothing(self, branch, products, pending_request):
        cola, water, _ = products
        db.session.get(Product, water.id).is_active = False
        db.session.commit()

        with pytest.raises(NotFoundError):
            authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        request = adjustment_request_service.get_request(pending_request.id)
        assert request.status == "PENDING_AUTHORIZATION"
        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 10
        assert _audit_count() == 0


# =============================================================================
# REJECT
# =============================================================================


class TestReject:

    def test_reject_writes_nothing(self, branch, products, pending_request):
        ledger_before = {
            (r.product_id, r.quantity) for r in db.session.query(StockLedgerRecord).all()
        }

        request = authorization_service.reject_request(pending_request.id, ADMIN_ID, "miscount")

        assert request.status == "REJECTED"
        assert request.rejection_reason == "miscount"
        assert request.deciding_user_id == ADMIN_ID
        assert {
            (r.product_id, r.quantity) for r in db.session.query(StockLedgerRecord).all()
        } == ledger_before
        assert _audit_count(pending_request.id) == 0
        session = db.session.get(ControlSession, request.control_session_id)
        assert session.adjustments_applied is False

    def test_reject_without_reason_uses_default(self, pending_request):
        request = authorization_service.reject_request(pending_request.id, ADMIN_ID, "   ")
        assert request.rejection_reason == authorization_service.DEFAULT_REJECTION_REASON

    def test_decided_requests_cannot_flip(self, pending_request):
        authorization_service.reject_request(pending_request.id, ADMIN_ID)

        with pytest.raises(AlreadyDecidedError):
            authorization_service.authorize_request(pending_request.id, ADMIN_ID)
        with pytest.raises(AlreadyDecidedError):
            authorization_service.reject_request(pending_request.id, OTHER_ADMIN_ID)

        assert _audit_count() == 0

    def test_reject_losing_to_authorize(self, branch, products, pending_request, monkeypatch):
        original = authorization_service._ensure_pending
        raced = []

        def racing_check(request):
            original(request)
            if not raced:
                raced.append(True)
                authorization_service.authorize_request(request.id, OTHER_ADMIN_ID)

        monkeypatch.setattr(authorization_service, "_ensure_pending", racing_check)

        with pytest.raises(AlreadyDecidedError):
            authorization_service.reject_request(pending_request.id, ADMIN_ID, "miscount")

        request = adjustment_request_service.get_request(pending_request.id)
        assert request.status == "AUTHORIZED"
        assert request.rejection_reason is None


# =============================================================================
# FAILURES AND RETRIES
# =============================================================================


class TestApplyFailures:

    def test_audit_failure_rolls_back_everything(self, branch, products, pending_request, monkeypatch):
        cola, water, _ = products
        monkeypatch.setattr(audit_service, "append_audit_record", _store_locked)

        with pytest.raises(TransientStoreError):
            authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        request = adjustment_request_service.get_request(pending_request.id)
        assert request.status == "PENDING_AUTHORIZATION"
        assert all(line.applied_at is None for line in request.lines)
        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 10
        assert stock_ledger_service.get_record(water.id, branch.id) is None
        assert _audit_count() == 0

        monkeypatch.undo()
        request = authorization_service.authorize_request(pending_request.id, ADMIN_ID)

        assert request.status == "AUTHORIZED"
        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 7
        assert stock_ledger_service.get_quantity(water.id, branch.id) == 4
        assert _audit_count(pending_request.id) == 2

    def test_chunked_apply_resumes_without_double_apply(
        self, app, branch, products, set_stock, finalize_count, monkeypatch
    ):
        cola, water, chips = products
        set_stock(cola, branch, 10)
        set_stock(water, branch, 10)
        set_stock(chips, branch, 10)
        session = finalize_count(branch, [(cola, 7), (water, 12), (chips, 1)])
        request_id = session.adjustment_request_id

        monkeypatch.setitem(app.config, "ADJUSTMENT_APPLY_CHUNK_SIZE", 1)
        original_apply = stock_ledger_service.apply_delta
        calls = []

        def flaky_apply(product_id, branch_id, delta):
            calls.append(product_id)
            if len(calls) == 2:
                _store_locked()
            return original_apply(product_id, branch_id, delta)

        monkeypatch.setattr(stock_ledger_service, "apply_delta", flaky_apply)

        with pytest.raises(TransientStoreError):
            authorization_service.authorize_request(request_id, ADMIN_ID)

        # First chunk committed, second rolled back
        request = adjustment_request_service.get_request(request_id)
        assert request.status == "PENDING_AUTHORIZATION"
        assert request.apply_started_at is not None
        assert [line.applied_at is not None for line in request.lines] == [True, False, False]
        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 7
        assert stock_ledger_service.get_quantity(water.id, branch.id) == 10
        assert _audit_count(request_id) == 1

        with pytest.raises(InvalidStateError):
            authorization_service.reject_request(request_id, ADMIN_ID, "changed my mind")

        request = authorization_service.authorize_request(request_id, ADMIN_ID)

        assert request.status == "AUTHORIZED"
        assert stock_ledger_service.get_quantity(cola.id, branch.id) == 7
        assert stock_ledger_service.get_quantity(water.id, branch.id) == 12
        assert stock_ledger_service.get_quantity(chips.id, branch.id) == 1
        assert _audit_count(request_id) == 3
        assert db.session.get(ControlSession, session.id).adjustments_applied is True

    def test_chunked_apply_happy_path(self, app, branch, products, finalize_count, monkeypatch):
        monkeypatch.setitem(app.config, "ADJUSTMENT_APPLY_CHUNK_SIZE", 2)
        session = finalize_count(branch, [(p, 3) for p in products])

        request = authorization_service.authorize_request(session.adjustment_request_id, ADMIN_ID)

        assert request.status == "AUTHORIZED"
        assert [stock_ledger_service.get_quantity(p.id, branch.id) for p in products] == [3, 3, 3]
        assert _audit_count(request.id) == 3
