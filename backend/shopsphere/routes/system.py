# backend/shopsphere/routes/system.py
"""
System health endpoint.

Reports database connectivity plus the loyalty accrual backlog, since a
growing PENDING outbox is the one failure the engine hides from callers.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, StoreInventoryRecord, Order, LoyaltyAccrualOutbox
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        record_count = db.session.query(StoreInventoryRecord).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "inventory_records": record_count,
                "orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_loyalty_outbox_health() -> dict:
    """Pending accruals mean points are owed but not yet credited."""
    start_time = time.time()
    try:
        pending = db.session.query(LoyaltyAccrualOutbox).filter_by(status="PENDING").count()
        failing = db.session.query(LoyaltyAccrualOutbox).filter(
            LoyaltyAccrualOutbox.status == "PENDING",
            LoyaltyAccrualOutbox.attempts > 0,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if failing else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending_accruals": pending,
                "failed_accruals": failing,
            }
        }
        if failing:
            result["warning"] = "Run 'flask loyalty retry-accruals' to credit pending points"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Loyalty outbox health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Loyalty outbox error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    outbox_health = check_loyalty_outbox_health()

    all_checks = [database_health, outbox_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "loyalty_outbox": outbox_health,
        }
    }

    return response, http_status
