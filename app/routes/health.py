# app/routes/health.py
"""
Health check endpoints for the API process.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_pool
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "feedback-context-engine"}


@router.get("/readyz")
async def readyz():
    """Readiness check covering Redis, the database pool and configuration."""
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    redis_ok = await fast_redis.ping()
    checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    overall_ok = overall_ok and redis_ok

    # 2) Database pool
    t0 = time.time()
    db_health = await db_pool.health_check()
    is_healthy = bool(db_health.get("healthy", False))
    checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    overall_ok = overall_ok and is_healthy

    # 3) Configuration
    config_issues = []
    if not settings.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
