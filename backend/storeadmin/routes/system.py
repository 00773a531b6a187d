# backend/storeadmin/routes/system.py
"""
System health and metrics endpoints.
"""

import time

from flask import Blueprint, Response, current_app
from sqlalchemy import select, func

from ..extensions import db, get_runtime
from ..metrics import render_latest
from ..models import AdminUser
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.execute(select(func.count()).select_from(AdminUser)).scalar_one()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"admin_users": user_count},
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_security_configuration() -> dict:
    """Degraded, not unhealthy: the app still serves, but operators must act."""
    runtime = get_runtime()
    warnings = []
    if not runtime.tokens.configured:
        warnings.append("JWT_SECRET not configured")
    if not runtime.cipher.enabled:
        warnings.append("PII encryption disabled")
    missing = sorted(p for p, s in runtime.settings.webhook_secrets.items() if not s)
    if missing:
        warnings.append(f"Webhook secrets missing: {', '.join(missing)}")

    if warnings:
        return {"status": "degraded", "warnings": warnings}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    security_health = check_security_configuration()

    all_checks = [database_health, security_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "security": security_health,
        },
    }, http_status


@system_bp.get("/metrics")
def metrics():
    payload, content_type = render_latest()
    return Response(payload, content_type=content_type)
