# Overview: Adjustment Request Manager; curates the pending-authorization queue.

"""
Adjustment request lifecycle:
1. PENDING_AUTHORIZATION: created from a finalized count's discrepancies
2. AUTHORIZED / REJECTED: decided once by an administrator (see authorization_service)

This module never touches the stock ledger.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AdjustmentLine, AdjustmentRequest, ControlSession
from ..models.reconciliation import (
    REQUEST_STATUS_AUTHORIZED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
    SESSION_STATUS_FINALIZED,
)
from . import catalog_service
from .concurrency import atomic
from .discrepancy_service import DiscrepancyLine, coerce_int
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError


REQUEST_STATUSES = (REQUEST_STATUS_PENDING, REQUEST_STATUS_AUTHORIZED, REQUEST_STATUS_REJECTED)


def _normalize_lines(raw_lines) -> list[DiscrepancyLine]:
    if not raw_lines:
        raise ValidationError("An adjustment request needs at least one line")

    lines = []
    seen = set()
    for index, raw in enumerate(raw_lines):
        if isinstance(raw, DiscrepancyLine):
            product_id = raw.product_id
            system_quantity = raw.system_quantity
            counted_quantity = raw.counted_quantity
            note = raw.note
        elif isinstance(raw, dict):
            try:
                product_id = coerce_int(raw["product_id"], f"lines[{index}].product_id")
                system_quantity = coerce_int(raw["system_quantity"], f"lines[{index}].system_quantity")
                counted_quantity = coerce_int(raw["counted_quantity"], f"lines[{index}].counted_quantity")
            except KeyError as e:
                raise ValidationError(f"lines[{index}] missing field: {e}") from e
            note = raw.get("note")
        else:
            raise ValidationError(f"lines[{index}] must be an object")

        if counted_quantity < 0:
            raise ValidationError(f"Counted quantity for product {product_id} cannot be negative")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once")
        seen.add(product_id)

        # delta is always derived, never trusted from input
        delta = counted_quantity - system_quantity
        if delta == 0:
            raise ValidationError(f"Line for product {product_id} has no discrepancy")

        lines.append(
            DiscrepancyLine(
                product_id=product_id,
                system_quantity=system_quantity,
                counted_quantity=counted_quantity,
                delta=delta,
                note=note,
            )
        )
    return lines


def create_pending_request(
    session: ControlSession,
    requestor_user_id: int,
    lines: list[DiscrepancyLine],
    notes: str | None = None,
) -> AdjustmentRequest:
    """
    Persist a PENDING_AUTHORIZATION request inside the caller's transaction
    and link it back to its session. Does not commit.
    """
    request = AdjustmentRequest(
        control_session_id=session.id,
        branch_id=session.branch_id,
        requestor_user_id=requestor_user_id,
        status=REQUEST_STATUS_PENDING,
        notes=notes,
    )
    db.session.add(request)
    db.session.flush()

    for line in lines:
        db.session.add(
            AdjustmentLine(
                request_id=request.id,
                product_id=line.product_id,
                system_quantity=line.system_quantity,
                counted_quantity=line.counted_quantity,
                delta=line.delta,
                note=line.note,
            )
        )

    session.adjustment_request_id = request.id
    db.session.flush()
    return request


def submit_request(
    control_session_id: int,
    branch_id: int,
    requestor_user_id: int,
    lines,
    notes: str | None = None,
) -> AdjustmentRequest:
    """
    Submit an adjustment request for a finalized control session.

    Raises:
        ValidationError: empty or malformed lines, non-integer ids, branch mismatch
        NotFoundError: session or a line's product does not exist
        InvalidStateError: session still in progress
        ConflictError: session already has a request
    """
    control_session_id = coerce_int(control_session_id, "control_session_id")
    branch_id = coerce_int(branch_id, "branch_id")
    normalized = _normalize_lines(lines)

    with atomic():
        session = db.session.get(ControlSession, control_session_id)
        if not session:
            raise NotFoundError(f"Control session {control_session_id} not found")
        for line in normalized:
            if not catalog_service.product_exists(line.product_id):
                raise NotFoundError(f"Product {line.product_id} not found")
        if session.branch_id != branch_id:
            raise ValidationError(
                f"Control session {control_session_id} belongs to branch {session.branch_id}, not {branch_id}"
            )
        if session.status != SESSION_STATUS_FINALIZED:
            raise InvalidStateError(f"Cannot submit adjustments for a session in {session.status} status")
        if session.adjustment_request_id is not None:
            raise ConflictError(
                f"Control session {control_session_id} already has adjustment request {session.adjustment_request_id}"
            )

        request = create_pending_request(session, requestor_user_id, normalized, notes=notes)

    current_app.logger.info(
        "Adjustment request %s submitted for session %s (%d lines)",
        request.id, control_session_id, len(normalized),
    )
    return request


def get_request(request_id: int) -> AdjustmentRequest:
    request = db.session.get(AdjustmentRequest, request_id)
    if not request:
        raise NotFoundError(f"Adjustment request {request_id} not found")
    return request


def list_pending(branch_id: int | None = None) -> list[AdjustmentRequest]:
    """Pending requests, most recently submitted first."""
    query = db.session.query(AdjustmentRequest).filter_by(status=REQUEST_STATUS_PENDING)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    return query.order_by(AdjustmentRequest.submitted_at.desc(), AdjustmentRequest.id.desc()).all()


def list_requests(
    branch_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[AdjustmentRequest]:
    if status is not None and status not in REQUEST_STATUSES:
        raise ValidationError(f"Invalid request status: {status}")

    query = db.session.query(AdjustmentRequest)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    if status is not None:
        query = query.filter_by(status=status)

    return query.order_by(
        AdjustmentRequest.submitted_at.desc(), AdjustmentRequest.id.desc()
    ).limit(limit).all()
