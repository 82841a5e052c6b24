# Overview: Flask API routes for physical count sessions; parses input and returns JSON responses.

"""
Control Session API Routes

DESIGN:
- Open a count for a branch (one in progress per branch)
- Resume: look up the branch's active count
- Finalize with counted quantities; discrepancies become a pending
  adjustment request in the same call
- History, detail and statistics for reporting screens

The caller's identity arrives already authenticated in X-User-Id.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_principal
from ..services import adjustment_request_service, control_session_service
from ..services.errors import ReconciliationError, ValidationError
from ..time_utils import parse_iso_datetime


control_sessions_bp = Blueprint("control_sessions", __name__, url_prefix="/api/control-sessions")


def _required_branch_id() -> int:
    branch_id = request.args.get("branch_id", type=int)
    if branch_id is None:
        raise ValidationError("branch_id query parameter is required")
    return branch_id


@control_sessions_bp.post("")
@require_principal
def open_session_route():
    """
    Open a control session.

    Request body:
    {
        "branch_id": int,
        "scope": "FULL" | "PARTIAL",
        "category_id": int (optional, PARTIAL only),
        "notes": str (optional)
    }

    Returns:
        201: Session opened
        400: Invalid request
        404: Branch or category not found
        409: Branch already has a session in progress
    """
    data = request.get_json(silent=True) or {}

    try:
        if "branch_id" not in data:
            return jsonify({"error": "Missing required field: branch_id"}), 400

        session = control_session_service.open_session(
            branch_id=data["branch_id"],
            user_id=g.user_id,
            scope=data.get("scope", "FULL"),
            category_id=data.get("category_id"),
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 201

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open control session")
        return jsonify({"error": "Internal server error"}), 500


@control_sessions_bp.get("/active")
@require_principal
def get_active_session_route():
    """
    Active (IN_PROGRESS) session of a branch, or null.

    Query parameters:
        branch_id: required
    """
    try:
        session = control_session_service.get_active_session(_required_branch_id())
        return jsonify({"session": session.to_dict() if session else None}), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load active control session")
        return jsonify({"error": "Internal server error"}), 500


@control_sessions_bp.get("/statistics")
@require_principal
def session_statistics_route():
    """
    Count statistics for a branch.

    Query parameters:
        branch_id: required
        since, until: optional ISO-8601 bounds (inclusive; a bare date covers the whole day)
    """
    try:
        try:
            since = parse_iso_datetime(request.args.get("since"))
            until = parse_iso_datetime(request.args.get("until"), end_of_day=True)
        except ValueError:
            return jsonify({"error": "since/until must be ISO-8601 datetimes"}), 400

        stats = control_session_service.get_session_statistics(
            _required_branch_id(), since=since, until=until
        )
        return jsonify(stats), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute control session statistics")
        return jsonify({"error": "Internal server error"}), 500


@control_sessions_bp.get("")
@require_principal
def list_sessions_route():
    """
    Session history, newest first.

    Query parameters:
        branch_id: Filter by branch
        status: IN_PROGRESS or FINALIZED
        limit: Max results (default 100)
    """
    try:
        limit = request.args.get("limit", current_app.config["DEFAULT_LIST_LIMIT"], type=int)
        sessions = control_session_service.list_sessions(
            branch_id=request.args.get("branch_id", type=int),
            status=request.args.get("status"),
            limit=limit,
        )
        return jsonify([s.to_dict() for s in sessions]), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list control sessions")
        return jsonify({"error": "Internal server error"}), 500


@control_sessions_bp.get("/<int:session_id>")
@require_principal
def get_session_route(session_id: int):
    """Session detail with counted lines."""
    try:
        session = control_session_service.get_session(session_id)
        return jsonify({"session": session.to_dict(include_lines=True)}), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load control session")
        return jsonify({"error": "Internal server error"}), 500


@control_sessions_bp.post("/<int:session_id>/finalize")
@require_principal
def finalize_session_route(session_id: int):
    """
    Finalize a session with counted quantities.

    Request body:
    {
        "counted_lines": [{"product_id": int, "counted_quantity": int, "note": str (optional)}],
        "closing_notes": str (optional)
    }

    Returns:
        200: {"session": ..., "adjustment_request": ... | null}
        400: Invalid counted lines
        404: Session or product not found
        409: Session already finalized
        503: Store contention, retry
    """
    data = request.get_json(silent=True) or {}

    try:
        session = control_session_service.finalize_session(
            session_id,
            data.get("counted_lines", []),
            user_id=g.user_id,
            closing_notes=data.get("closing_notes"),
        )

        adjustment_request = None
        if session.adjustment_request_id is not None:
            adjustment_request = adjustment_request_service.get_request(session.adjustment_request_id)

        return jsonify({
            "session": session.to_dict(include_lines=True),
            "adjustment_request": adjustment_request.to_dict(include_lines=True) if adjustment_request else None,
        }), 200

    except ReconciliationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize control session")
        return jsonify({"error": "Internal server error"}), 500
