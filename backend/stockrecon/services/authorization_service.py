# Overview: Authorization Engine; decides adjustment requests and applies them to the stock ledger exactly once.

"""
Authorization Engine

STATE MACHINE (per request):
    PENDING_AUTHORIZATION -> AUTHORIZED   (terminal)
    PENDING_AUTHORIZATION -> REJECTED     (terminal)

EXACTLY-ONCE APPLICATION:
- Every transition is a conditional UPDATE ... WHERE status = 'PENDING_AUTHORIZATION'.
  Of two concurrent deciders only one matches a row; the other gets
  AlreadyDecidedError.
- Default mode applies all lines, writes their audit records, flips the
  status and marks the session in ONE transaction. A crash or store error
  leaves no partial state, so Authorize can simply be called again.
- Chunked mode (ADJUSTMENT_APPLY_CHUNK_SIZE > 0, for stores that cap writes
  per transaction) commits lines in several transactions. Each line is
  claimed by a conditional UPDATE of adjustment_lines.applied_at in the
  same transaction as its ledger and audit writes, so a retry after a
  partial apply skips lines that already committed. The status flip rides
  on the last chunk. Once the first chunk starts (apply_started_at) the
  request can no longer be rejected.
- No retries happen here. TransientStoreError goes back to the caller.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AdjustmentLine, AdjustmentRequest, ControlSession
from ..models.reconciliation import (
    REQUEST_STATUS_AUTHORIZED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
)
from ..time_utils import utcnow
from . import audit_service, stock_ledger_service
from .concurrency import atomic, conditional_update
from .errors import AlreadyDecidedError, InvalidStateError, NotFoundError


DEFAULT_REJECTION_REASON = "Rejected by administrator"


def _load_request(request_id: int) -> AdjustmentRequest:
    request = db.session.get(AdjustmentRequest, request_id)
    if not request:
        raise NotFoundError(f"Adjustment request {request_id} not found")
    return request


def _ensure_pending(request: AdjustmentRequest) -> None:
    if not request.is_pending:
        raise AlreadyDecidedError(
            f"Adjustment request {request.id} was already decided ({request.status})"
        )


def _pending_requests(request_id: int):
    return db.session.query(AdjustmentRequest).filter(
        AdjustmentRequest.id == request_id,
        AdjustmentRequest.status == REQUEST_STATUS_PENDING,
    )


def _claim_decision(request_id: int, values: dict, extra_filters=()) -> bool:
    values = dict(values)
    values[AdjustmentRequest.version_id] = AdjustmentRequest.version_id + 1
    return conditional_update(_pending_requests(request_id).filter(*extra_filters), values)


def _raise_lost_decision(request_id: int) -> None:
    status = db.session.query(AdjustmentRequest.status).filter_by(id=request_id).scalar()
    raise AlreadyDecidedError(f"Adjustment request {request_id} was already decided ({status})")


def _apply_lines(request_id: int, branch_id: int, line_ids: list[int], deciding_user_id: int) -> int:
    """
    Apply the given lines inside the current transaction.

    A line whose applied_at marker is already set is skipped. Returns how
    many lines this call applied.
    """
    if not line_ids:
        return 0

    applied = 0
    lines = db.session.query(AdjustmentLine).filter(
        AdjustmentLine.id.in_(line_ids)
    ).order_by(AdjustmentLine.id.asc()).all()

    for line in lines:
        marked = conditional_update(
            db.session.query(AdjustmentLine).filter(
                AdjustmentLine.id == line.id,
                AdjustmentLine.applied_at.is_(None),
            ),
            {AdjustmentLine.applied_at: utcnow()},
        )
        if not marked:
            continue

        quantity_before, quantity_after = stock_ledger_service.apply_delta(
            line.product_id, branch_id, line.delta
        )
        audit_service.append_audit_record(
            adjustment_request_id=request_id,
            adjustment_line_id=line.id,
            product_id=line.product_id,
            branch_id=branch_id,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            deciding_user_id=deciding_user_id,
        )
        applied += 1
    return applied


def _complete_authorization(request: AdjustmentRequest, line_ids: list[int], deciding_user_id: int) -> int:
    """One transaction: flip status, apply remaining lines, mark the session."""
    request_id = request.id
    branch_id = request.branch_id
    session_id = request.control_session_id

    with atomic():
        claimed = _claim_decision(
            request_id,
            {
                AdjustmentRequest.status: REQUEST_STATUS_AUTHORIZED,
                AdjustmentRequest.decided_at: utcnow(),
                AdjustmentRequest.deciding_user_id: deciding_user_id,
            },
        )
        if not claimed:
            _raise_lost_decision(request_id)

        applied = _apply_lines(request_id, branch_id, line_ids, deciding_user_id)

        conditional_update(
            db.session.query(ControlSession).filter(ControlSession.id == session_id),
            {
                ControlSession.adjustments_applied: True,
                ControlSession.version_id: ControlSession.version_id + 1,
            },
        )
    return applied


def _apply_chunk(request: AdjustmentRequest, line_ids: list[int], deciding_user_id: int) -> int:
    """One transaction: mark the apply as started and apply one chunk of lines."""
    request_id = request.id
    branch_id = request.branch_id

    with atomic():
        started = _claim_decision(
            request_id,
            {AdjustmentRequest.apply_started_at: db.func.coalesce(AdjustmentRequest.apply_started_at, utcnow())},
        )
        if not started:
            _raise_lost_decision(request_id)

        applied = _apply_lines(request_id, branch_id, line_ids, deciding_user_id)

    current_app.logger.info(
        "Adjustment request %s: applied chunk of %d lines", request_id, applied
    )
    return applied


def authorize_request(request_id: int, deciding_user_id: int) -> AdjustmentRequest:
    """
    Authorize a pending request and apply its deltas to the stock ledger.

    Args:
        request_id: Adjustment request ID
        deciding_user_id: Administrator making the decision

    Returns:
        AdjustmentRequest: The authorized request

    Raises:
        NotFoundError: request does not exist, or a line's product left the catalog (nothing applied)
        AlreadyDecidedError: request is not pending (including losing a race)
        TransientStoreError: store contention; safe to retry
    """
    request = _load_request(request_id)
    _ensure_pending(request)

    pending_line_ids = [line.id for line in request.lines if line.applied_at is None]
    chunk_size = current_app.config.get("ADJUSTMENT_APPLY_CHUNK_SIZE") or 0

    if chunk_size <= 0 or len(pending_line_ids) <= chunk_size:
        applied = _complete_authorization(request, pending_line_ids, deciding_user_id)
    else:
        applied = 0
        chunks = [
            pending_line_ids[i:i + chunk_size]
            for i in range(0, len(pending_line_ids), chunk_size)
        ]
        for chunk in chunks[:-1]:
            applied += _apply_chunk(request, chunk, deciding_user_id)
        applied += _complete_authorization(request, chunks[-1], deciding_user_id)

    request = _load_request(request_id)
    current_app.logger.info(
        "Adjustment request %s authorized by user %s (%d lines applied)",
        request_id, deciding_user_id, applied,
    )
    return request


def reject_request(request_id: int, deciding_user_id: int, reason: str | None = None) -> AdjustmentRequest:
    """
    Reject a pending request. No ledger or audit writes.

    Raises:
        NotFoundError: request does not exist
        AlreadyDecidedError: request is not pending
        InvalidStateError: a chunked authorization already started applying lines
    """
    request = _load_request(request_id)
    _ensure_pending(request)
    if request.apply_started_at is not None:
        raise InvalidStateError(
            f"Adjustment request {request_id} is being applied and can no longer be rejected"
        )

    reason = (reason or "").strip() or DEFAULT_REJECTION_REASON

    with atomic():
        claimed = _claim_decision(
            request_id,
            {
                AdjustmentRequest.status: REQUEST_STATUS_REJECTED,
                AdjustmentRequest.decided_at: utcnow(),
                AdjustmentRequest.deciding_user_id: deciding_user_id,
                AdjustmentRequest.rejection_reason: reason,
            },
            extra_filters=(AdjustmentRequest.apply_started_at.is_(None),),
        )
        if not claimed:
            status, apply_started_at = db.session.query(
                AdjustmentRequest.status, AdjustmentRequest.apply_started_at
            ).filter_by(id=request_id).one()
            if status == REQUEST_STATUS_PENDING and apply_started_at is not None:
                raise InvalidStateError(
                    f"Adjustment request {request_id} is being applied and can no longer be rejected"
                )
            raise AlreadyDecidedError(f"Adjustment request {request_id} was already decided ({status})")

    request = _load_request(request_id)
    current_app.logger.info("Adjustment request %s rejected by user %s: %s", request_id, deciding_user_id, reason)
    return request
