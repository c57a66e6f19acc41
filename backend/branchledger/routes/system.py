# backend/branchledger/routes/system.py
"""
System health endpoint.

Reports database reachability and ledger table sizes for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Branch, StockSnapshot, StockLedgerEntry, Bill
from branchledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "branches": db.session.query(Branch).count(),
            "snapshots": db.session.query(StockSnapshot).count(),
            "ledger_entries": db.session.query(StockLedgerEntry).count(),
            "bills": db.session.query(Bill).count(),
        }

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "unhealthy",
        "checked_at": to_utc_z(utcnow()),
        "database": database,
    }, (200 if healthy else 503)
