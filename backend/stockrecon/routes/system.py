# backend/stockrecon/routes/system.py
"""
Liveness and deployment information for the reconciliation service.

/health answers 503 when the database cannot be queried. Besides
connectivity it reports the reconciliation backlog (counts in progress,
requests waiting for a decision and how long the oldest has waited) so
an operator can tell a stuck queue from a healthy one.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import AdjustmentRequest, Branch, ControlSession
from ..models.reconciliation import REQUEST_STATUS_PENDING, SESSION_STATUS_IN_PROGRESS
from ..time_utils import age_seconds, to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        branches = db.session.query(func.count(Branch.id)).scalar()
        in_progress = db.session.query(func.count(ControlSession.id)).filter(
            ControlSession.status == SESSION_STATUS_IN_PROGRESS
        ).scalar()
        pending, oldest_pending = db.session.query(
            func.count(AdjustmentRequest.id), func.min(AdjustmentRequest.submitted_at)
        ).filter(AdjustmentRequest.status == REQUEST_STATUS_PENDING).one()
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": "Database error",
        }

    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": {
            "branches": branches,
            "sessions_in_progress": in_progress,
            "requests_pending": pending,
            "oldest_pending_age_seconds": age_seconds(oldest_pending),
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database = _database_check()
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, 503 if database["status"] == "unhealthy" else 200


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information (no secrets, paths or credentials)."""
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
