# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


PRINCIPAL_HEADER = "X-User-Id"


def require_principal(f):
    """
    Require an already-authenticated principal.

    Authentication happens upstream (gateway / session layer); it forwards
    the user id in the X-User-Id header. This decorator only copies it into
    g.user_id so services can record who acted.

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(PRINCIPAL_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"Invalid {PRINCIPAL_HEADER} header"}), 401

        g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
