"""
Audit trail tests.

Verifies:
- One record per applied line, inside the authorizing transaction
- Product history across requests, newest first, branch filter
- Nothing is recorded for rejected or pending requests
"""

from conftest import ADMIN_ID, OTHER_ADMIN_ID
from stockrecon.services import audit_service, authorization_service


class TestAuditTrail:

    def test_product_history_across_requests(self, branch, other_branch, products, set_stock, finalize_count):
        cola = products[0]
        set_stock(cola, branch, 10)

        first = finalize_count(branch, [(cola, 8)])
        authorization_service.authorize_request(first.adjustment_request_id, ADMIN_ID)
        second = finalize_count(branch, [(cola, 11)])
        authorization_service.authorize_request(second.adjustment_request_id, OTHER_ADMIN_ID)
        elsewhere = finalize_count(other_branch, [(cola, 3)])
        authorization_service.authorize_request(elsewhere.adjustment_request_id, ADMIN_ID)

        history = audit_service.query_by_product(cola.id, branch_id=branch.id)
        assert [(r.quantity_before, r.quantity_after, r.deciding_user_id) for r in history] == [
            (8, 11, OTHER_ADMIN_ID),
            (10, 8, ADMIN_ID),
        ]
        assert len(audit_service.query_by_product(cola.id)) == 3

    def test_chain_of_quantities_is_continuous(self, branch, products, finalize_count):
        cola = products[0]
        for counted in (5, 2, 9):
            session = finalize_count(branch, [(cola, counted)])
            authorization_service.authorize_request(session.adjustment_request_id, ADMIN_ID)

        history = list(reversed(audit_service.query_by_product(cola.id, branch_id=branch.id)))
        assert [(r.quantity_before, r.quantity_after) for r in history] == [(0, 5), (5, 2), (2, 9)]

    def test_nothing_recorded_for_pending_or_rejected(self, branch, products, finalize_count):
        cola, water, _ = products
        pending = finalize_count(branch, [(cola, 1)])
        rejected = finalize_count(branch, [(water, 1)])
        authorization_service.reject_request(rejected.adjustment_request_id, ADMIN_ID, "miscount")

        assert audit_service.query_by_request(pending.adjustment_request_id) == []
        assert audit_service.query_by_request(rejected.adjustment_request_id) == []
        assert audit_service.query_by_product(water.id) == []

    def test_record_references_its_line(self, branch, products, finalize_count):
        session = finalize_count(branch, [(products[0], 6), (products[2], 1)])
        request = authorization_service.authorize_request(session.adjustment_request_id, ADMIN_ID)

        records = audit_service.query_by_request(request.id)
        assert [r.adjustment_line_id for r in records] == [line.id for line in request.lines]
        assert all(r.branch_id == branch.id for r in records)
