# Overview: Flask API routes for read-only stock ledger lookups.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_principal
from ..services import stock_ledger_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@require_principal
def list_branch_stock_route():
    """
    Ledger records of one branch.

    Query parameters:
        branch_id: required
    """
    branch_id = request.args.get("branch_id", type=int)
    if branch_id is None:
        return jsonify({"error": "branch_id query parameter is required"}), 400

    try:
        records = stock_ledger_service.list_branch_stock(branch_id)
        return jsonify([r.to_dict() for r in records]), 200

    except Exception:
        current_app.logger.exception("Failed to list branch stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<int:branch_id>/<int:product_id>")
@require_principal
def get_stock_route(branch_id: int, product_id: int):
    """Current on-hand quantity; 0 with record=null when never stocked."""
    try:
        record = stock_ledger_service.get_record(product_id, branch_id)
        return jsonify({
            "branch_id": branch_id,
            "product_id": product_id,
            "quantity": record.quantity if record else 0,
            "record": record.to_dict() if record else None,
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load stock record")
        return jsonify({"error": "Internal server error"}), 500
