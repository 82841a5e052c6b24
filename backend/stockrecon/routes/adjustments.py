# Overview: Flask API routes for adjustment requests and their authorization; parses input and returns JSON responses.

"""
Adjustment Request API Routes

WHY: Discrepancies found by a physical count only reach the stock ledger
after an administrator authorizes them.

DESIGN:
- Pending queue (optionally per branch), most recent first
- Authorize applies every line to the ledger and writes the audit trail
  atomically; Reject discards the request
- Both decisions happen once. A second decision gets 409 with
  "already_decided": true, which clients treat as done, not as a retry

Which principals may decide is enforced upstream; here the X-User-Id is
only recorded.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_principal
from ..services import adjustment_request_service, authorization_service
from ..services.errors import ReconciliationError


adjustments_bp = Blueprint("adjustments", __name__, url_prefix="/api/adjustment-requests")


@adjustments_bp.post("")
@require_principal
def submit_request_route():
    """
    Submit an adjustment request for a finalized session that has none.

    Request body:
    {
        "control_session_id": int,
        "branch_id": int,
        "lines": [{"product_id": int, "system_quantity": int, "counted_quantity": int, "note": str (optional)}],
        "notes": str (optional)
    }

    Returns:
        201: Request created (PENDING_AUTHORIZATION)
        400: Invalid or empty lines
        404: Session not found
        409: Session in progress or already has a request
    """
    data = request.get_json(silent=True) or {}

    try:
        missing = [f for f in ("control_session_id", "branch_id", "lines") if f not in data]
        if missing:
            return jsonify({"error": f"Missing required field: {', '.join(missing)}"}), 400

        adjustment_request = adjustment_request_service.submit_request(
            control_session_id=data["control_session_id"],
            branch_id=data["branch_id"],
            requestor_user_id=g.user_id,
            lines=data["lines"],
            notes=data.get("notes"),
        )
        return jsonify({"adjustment_request": adjustment_request.to_dict(include_lines=True)}), 201

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit adjustment request")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/pending")
@require_principal
def list_pending_route():
    """
    Pending adjustment requests (administrator queue).

    Query parameters:
        branch_id: optional branch filter
    """
    try:
        requests = adjustment_request_service.list_pending(
            branch_id=request.args.get("branch_id", type=int)
        )
        return jsonify([r.to_dict(include_lines=True) for r in requests]), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending adjustment requests")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("")
@require_principal
def list_requests_route():
    """
    Request history with optional filters.

    Query parameters:
        branch_id: Filter by branch
        status: PENDING_AUTHORIZATION, AUTHORIZED or REJECTED
        limit: Max results (default 100)
    """
    try:
        limit = request.args.get("limit", current_app.config["DEFAULT_LIST_LIMIT"], type=int)
        requests = adjustment_request_service.list_requests(
            branch_id=request.args.get("branch_id", type=int),
            status=request.args.get("status"),
            limit=limit,
        )
        return jsonify([r.to_dict() for r in requests]), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list adjustment requests")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/<int:request_id>")
@require_principal
def get_request_route(request_id: int):
    try:
        adjustment_request = adjustment_request_service.get_request(request_id)
        return jsonify({"adjustment_request": adjustment_request.to_dict(include_lines=True)}), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load adjustment request")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("/<int:request_id>/authorize")
@require_principal
def authorize_request_route(request_id: int):
    """
    Authorize a pending request and apply it to the stock ledger.

    Returns:
        200: Request authorized, ledger updated, audit trail written
        404: Request not found
        409: Already decided
        503: Store contention; nothing applied, retry
    """
    try:
        adjustment_request = authorization_service.authorize_request(
            request_id=request_id,
            deciding_user_id=g.user_id,
        )
        return jsonify({"adjustment_request": adjustment_request.to_dict(include_lines=True)}), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to authorize adjustment request")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("/<int:request_id>/reject")
@require_principal
def reject_request_route(request_id: int):
    """
    Reject a pending request. The stock ledger is not touched.

    Request body:
    {
        "reason": str (optional, defaults to "Rejected by administrator")
    }

    Returns:
        200: Request rejected
        404: Request not found
        409: Already decided, or authorization already applying
    """
    data = request.get_json(silent=True) or {}

    try:
        adjustment_request = authorization_service.reject_request(
            request_id=request_id,
            deciding_user_id=g.user_id,
            reason=data.get("reason"),
        )
        return jsonify({"adjustment_request": adjustment_request.to_dict()}), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject adjustment request")
        return jsonify({"error": "Internal server error"}), 500
