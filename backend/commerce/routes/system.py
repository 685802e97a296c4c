# Overview: Flask API routes for system health; reports database and lifecycle backlog status.

"""
System health endpoint.

Reports database connectivity plus lifecycle backlog counters useful when
debugging a deployment (expired carts awaiting the sweep, payments
awaiting confirmation).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Cart, Payment
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        active_carts = db.session.query(Cart).filter_by(status="active").count()
        expired_carts = db.session.query(Cart).filter(
            Cart.status == "active",
            Cart.expires_at < utcnow(),
        ).count()
        pending_payments = db.session.query(Payment).filter_by(status="pending").count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_carts": active_carts,
                "expired_pending_cleanup": expired_carts,
                "pending_payments": pending_payments,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Database reachable
    - 503: Database unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"
    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        }
    }

    return response, 200 if healthy else 503
