"""
Health check endpoints for the deal expiration service.
"""

import time

from fastapi import APIRouter

from dealwatch.config import settings
from dealwatch.db.pool import db_health_check
from dealwatch.features.deal_expiration.jobs.expiration_job import get_deal_expiration_job_status
from dealwatch.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "dealwatch"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database reachability plus required configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    db_health = await db_health_check()
    latency_ms = round((time.time() - t0) * 1000, 1)
    db_ok = bool(db_health.get("healthy", False))

    checks["database"] = {"ok": db_ok, "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"].update(db_health["pool_stats"])
    if "warnings" in db_health:
        checks["database"]["warnings"] = db_health["warnings"]
    if not db_ok:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    log_health_check("database", db_ok, latency_ms, checks["database"].get("error"))
    overall_ok = overall_ok and db_ok

    # 2) Configuration
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if settings.EMAIL_ENABLED and not settings.BREVO_API_KEY:
        config_issues.append("BREVO_API_KEY not set while email is enabled")
    if settings.EMAIL_ENABLED and not settings.BREVO_SENDER_EMAIL:
        config_issues.append("BREVO_SENDER_EMAIL not set while email is enabled")
    if settings.SMS_ENABLED and not settings.twilio_configured():
        config_issues.append("Twilio credentials incomplete while SMS is enabled")

    config_ok = not config_issues
    checks["configuration"] = {
        "ok": config_ok,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and config_ok

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/deal-expiration")
async def deal_expiration_health():
    """Status of the deal expiration job in this process."""
    return get_deal_expiration_job_status()
