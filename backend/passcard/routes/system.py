# backend/passcard/routes/system.py
"""
System health and debugging endpoints.

/health reports database and session table health for load balancers.
/api/debug/env is only served in development and never exposes secrets.
"""

import time
from flask import Blueprint, current_app

from ..decorators import guarded, env_flag_enabled
from ..extensions import db
from ..models import AuthSession, Company, Membership, User
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Run cheap counts against the core tables."""
    start_time = time.time()
    try:
        details = {
            "companies": db.session.query(Company).count(),
            "users": db.session.query(User).count(),
            "memberships": db.session.query(Membership).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(AuthSession).filter_by(is_revoked=False).count()
        expired_sessions = db.session.query(AuthSession).filter(
            AuthSession.expires_at < now,
            AuthSession.is_revoked == False  # noqa: E712
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Session service error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    session_health = check_session_service_health()

    unhealthy = any(check["status"] == "unhealthy" for check in (database_health, session_health))

    response = {
        "status": "unhealthy" if unhealthy else "healthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "session_service": session_health,
        }
    }
    return response, 503 if unhealthy else 200


@system_bp.get("/api/debug/env")
@guarded(development_only=True)
def debug_env():
    """Feature flag state for local debugging. Development only."""
    config = current_app.config
    role_upgrade = env_flag_enabled("ALLOW_DEMO_ROLE_UPGRADE")
    user_management = env_flag_enabled("ALLOW_USER_MANAGEMENT")
    demo_topup = env_flag_enabled("ALLOW_DEMO_TOPUP")

    return {
        "environment": {
            "ENVIRONMENT": config.get("ENVIRONMENT"),
            "ALLOW_DEMO_ROLE_UPGRADE": role_upgrade,
            "ALLOW_USER_MANAGEMENT": user_management,
            "ALLOW_DEMO_TOPUP": demo_topup,
            "DEV_FALLBACK_PRINCIPAL": bool(config.get("DEV_FALLBACK_PRINCIPAL")),
            "QR_CODE_EXPIRY_MINUTES": config.get("QR_CODE_EXPIRY_MINUTES"),
        },
        "message": "Environment check for debugging",
        "recommendations": {
            "roleUpgrade": "Role upgrade enabled" if role_upgrade
            else "Role upgrade disabled - set ALLOW_DEMO_ROLE_UPGRADE=true",
            "userManagement": "User management enabled" if user_management
            else "User management disabled - set ALLOW_USER_MANAGEMENT=true",
            "demoTopup": "Self-service top-up enabled" if demo_topup
            else "Self-service top-up disabled - set ALLOW_DEMO_TOPUP=true",
        },
    }
