# backend/stockflow/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports row counts for the stock pools so
a deployment can be sanity-checked at a glance.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CentralStockLine, Shipment, Store, StoreStockLine
from ..models.shipments import SHIPMENT_OPEN_STATUSES
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        central_units = db.session.query(func.coalesce(func.sum(CentralStockLine.quantity), 0)).scalar()
        store_units = db.session.query(func.coalesce(func.sum(StoreStockLine.quantity), 0)).scalar()
        open_shipments = (
            db.session.query(Shipment)
            .filter(Shipment.status.in_(SHIPMENT_OPEN_STATUSES))
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "central_units": int(central_units),
                "store_units": int(store_units),
                "open_shipments": open_shipments,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
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
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
        }
    }, http_status
