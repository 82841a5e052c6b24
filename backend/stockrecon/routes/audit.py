# Overview: Flask API routes exposing the audit trail to reporting clients.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_principal
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/products/<int:product_id>")
@require_principal
def audit_by_product_route(product_id: int):
    """
    Applied adjustments of one product, newest first.

    Query parameters:
        branch_id: optional branch filter
    """
    try:
        records = audit_service.query_by_product(product_id, branch_id=request.args.get("branch_id", type=int))
        return jsonify([r.to_dict() for r in records]), 200

    except Exception:
        current_app.logger.exception("Failed to query audit trail by product")
        return jsonify({"error": "Internal server error"}), 500


@audit_bp.get("/requests/<int:request_id>")
@require_principal
def audit_by_request_route(request_id: int):
    """Applied lines of one adjustment request (empty unless authorized)."""
    try:
        records = audit_service.query_by_request(request_id)
        return jsonify([r.to_dict() for r in records]), 200

    except Exception:
        current_app.logger.exception("Failed to query audit trail by request")
        return jsonify({"error": "Internal server error"}), 500
