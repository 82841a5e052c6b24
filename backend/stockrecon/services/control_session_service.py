# Overview: Control Session Manager; opens, tracks and finalizes physical count sessions per branch.

"""
Physical count (control session) service.

LIFECYCLE:
1. IN_PROGRESS: session opened, staff counting products in the branch
2. FINALIZED: counted quantities stored; discrepancies computed and, when
   any exist, submitted as one PENDING_AUTHORIZATION adjustment request

At most one IN_PROGRESS session exists per branch. The partial unique index
on control_sessions.branch_id is what guarantees it; the pre-check in
open_session only produces a friendlier error in the common case.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AdjustmentLine, AdjustmentRequest, ControlSession, ControlSessionLine
from ..models.reconciliation import (
    REQUEST_STATUS_AUTHORIZED,
    SESSION_SCOPE_FULL,
    SESSION_SCOPE_PARTIAL,
    SESSION_STATUS_FINALIZED,
    SESSION_STATUS_IN_PROGRESS,
)
from ..time_utils import utcnow
from . import catalog_service
from .adjustment_request_service import create_pending_request
from .concurrency import atomic, conditional_update, lock_for_update
from .discrepancy_service import CountedLine, compute_discrepancies, normalize_counted_lines
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError


SESSION_SCOPES = (SESSION_SCOPE_FULL, SESSION_SCOPE_PARTIAL)
SESSION_STATUSES = (SESSION_STATUS_IN_PROGRESS, SESSION_STATUS_FINALIZED)


def open_session(
    branch_id: int,
    user_id: int,
    scope: str,
    category_id: int | None = None,
    notes: str | None = None,
) -> ControlSession:
    """
    Open a count session for a branch.

    Args:
        branch_id: Branch being counted
        user_id: User starting the count
        scope: "FULL" or "PARTIAL"
        category_id: Optional category filter (PARTIAL only)
        notes: Optional free-text notes

    Raises:
        ValidationError: invalid scope / category combination
        NotFoundError: branch or category missing
        ConflictError: branch already has an IN_PROGRESS session
    """
    scope = (scope or "").upper()
    if scope not in SESSION_SCOPES:
        raise ValidationError(f"Invalid session scope: {scope or None}")
    if category_id is not None and scope != SESSION_SCOPE_PARTIAL:
        raise ValidationError("A category filter is only allowed on PARTIAL sessions")

    with atomic():
        catalog_service.get_branch(branch_id)
        if category_id is not None:
            catalog_service.get_category(category_id)

        active = get_active_session(branch_id)
        if active:
            raise ConflictError(f"Branch {branch_id} already has control session {active.id} in progress")

        session = ControlSession(
            branch_id=branch_id,
            initiator_user_id=user_id,
            scope=scope,
            category_id=category_id,
            status=SESSION_STATUS_IN_PROGRESS,
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError as e:
            # Lost the race: another session for this branch was inserted concurrently
            raise ConflictError(f"Branch {branch_id} already has a control session in progress") from e

    current_app.logger.info("Control session %s opened for branch %s by user %s", session.id, branch_id, user_id)
    return session


def get_active_session(branch_id: int) -> ControlSession | None:
    return db.session.query(ControlSession).filter_by(
        branch_id=branch_id, status=SESSION_STATUS_IN_PROGRESS
    ).order_by(ControlSession.started_at.desc()).first()


def get_session(session_id: int) -> ControlSession:
    session = db.session.get(ControlSession, session_id)
    if not session:
        raise NotFoundError(f"Control session {session_id} not found")
    return session


def list_sessions(
    branch_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[ControlSession]:
    """Session history, newest first."""
    if status is not None and status not in SESSION_STATUSES:
        raise ValidationError(f"Invalid session status: {status}")

    query = db.session.query(ControlSession)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(ControlSession.started_at.desc(), ControlSession.id.desc()).limit(limit).all()


def _validate_counted_products(session: ControlSession, lines: list[CountedLine]) -> None:
    products = catalog_service.get_products(line.product_id for line in lines)
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise NotFoundError(f"Product {line.product_id} not found")
        if session.category_id is not None and product.category_id != session.category_id:
            raise ValidationError(
                f"Product {line.product_id} is outside category {session.category_id} of this count"
            )


def finalize_session(
    session_id: int,
    counted_lines,
    user_id: int | None = None,
    closing_notes: str | None = None,
) -> ControlSession:
    """
    Finalize a count: store counted lines, compute discrepancies and, when
    there are any, create a PENDING_AUTHORIZATION adjustment request.

    Everything happens in one transaction; a failure anywhere (including
    the ledger read) leaves the session IN_PROGRESS so the call can be
    retried. With zero discrepancies no request is created and
    adjustments_applied stays False.

    Raises:
        ValidationError: malformed counted lines or category mismatch
        NotFoundError: session or a counted product missing
        InvalidStateError: session already finalized
    """
    lines = normalize_counted_lines(counted_lines)

    with atomic():
        session = lock_for_update(db.session.query(ControlSession).filter_by(id=session_id)).first()
        if not session:
            raise NotFoundError(f"Control session {session_id} not found")
        if session.status != SESSION_STATUS_IN_PROGRESS:
            raise InvalidStateError(f"Cannot finalize control session in {session.status} status")

        _validate_counted_products(session, lines)

        claimed = conditional_update(
            db.session.query(ControlSession).filter(
                ControlSession.id == session_id,
                ControlSession.status == SESSION_STATUS_IN_PROGRESS,
            ),
            {
                ControlSession.status: SESSION_STATUS_FINALIZED,
                ControlSession.finalized_at: utcnow(),
                ControlSession.closing_notes: closing_notes,
                ControlSession.version_id: ControlSession.version_id + 1,
            },
        )
        if not claimed:
            raise InvalidStateError(f"Control session {session_id} was finalized concurrently")
        db.session.expire(session)

        for line in lines:
            db.session.add(
                ControlSessionLine(
                    session_id=session_id,
                    product_id=line.product_id,
                    counted_quantity=line.counted_quantity,
                    note=line.note,
                )
            )

        discrepancies = compute_discrepancies(session.branch_id, lines)
        request = None
        if discrepancies:
            request = create_pending_request(
                session,
                requestor_user_id=user_id if user_id is not None else session.initiator_user_id,
                lines=discrepancies,
                notes=closing_notes,
            )

    if request:
        current_app.logger.info(
            "Control session %s finalized with %d discrepancies; adjustment request %s pending",
            session_id, len(discrepancies), request.id,
        )
    else:
        current_app.logger.info("Control session %s finalized with no discrepancies", session_id)
    return session


def get_session_statistics(
    branch_id: int,
    since: datetime | None = None,
    until: datetime | None = None,
) -> dict:
    """
    Count activity for a branch over an optional [since, until] window.

    Returns sessions finalized, products counted, requests authorized and
    the total absolute units those requests moved.
    """
    session_filters = [
        ControlSession.branch_id == branch_id,
        ControlSession.status == SESSION_STATUS_FINALIZED,
    ]
    if since is not None:
        session_filters.append(ControlSession.finalized_at >= since)
    if until is not None:
        session_filters.append(ControlSession.finalized_at <= until)

    request_filters = [
        AdjustmentRequest.branch_id == branch_id,
        AdjustmentRequest.status == REQUEST_STATUS_AUTHORIZED,
    ]
    if since is not None:
        request_filters.append(AdjustmentRequest.decided_at >= since)
    if until is not None:
        request_filters.append(AdjustmentRequest.decided_at <= until)

    session_ids = select(ControlSession.id).where(*session_filters)
    request_ids = select(AdjustmentRequest.id).where(*request_filters)

    sessions_finalized = db.session.query(func.count(ControlSession.id)).filter(*session_filters).scalar()
    products_counted = db.session.query(func.count(ControlSessionLine.id)).filter(
        ControlSessionLine.session_id.in_(session_ids)
    ).scalar()
    requests_authorized = db.session.query(func.count(AdjustmentRequest.id)).filter(*request_filters).scalar()
    units_adjusted = db.session.query(
        func.coalesce(func.sum(func.abs(AdjustmentLine.delta)), 0)
    ).filter(AdjustmentLine.request_id.in_(request_ids)).scalar()

    return {
        "branch_id": branch_id,
        "sessions_finalized": sessions_finalized or 0,
        "products_counted": products_counted or 0,
        "requests_authorized": requests_authorized or 0,
        "units_adjusted": int(units_adjusted or 0),
    }
