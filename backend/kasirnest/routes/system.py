# backend/kasirnest/routes/system.py
"""
Liveness endpoint: process up plus a round trip to the database.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..responses import error, success
from kasirnest.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    payload = {
        "status": "OK" if database["status"] == "healthy" else "DEGRADED",
        "timestamp": to_utc_z(utcnow()),
        "database": database,
    }
    if database["status"] != "healthy":
        return error("Database unavailable", 503, details=payload)
    return success(payload)
