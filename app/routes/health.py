# app/routes/health.py
"""
Health check endpoints with database pool and Redis monitoring.
"""

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.routes.dependencies import get_container
from app.services.container import ServiceContainer
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "receptionist"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check over the database pool and Redis.

    Redis only backs job leases, so it is reported but does not fail readiness.
    """
    checks = {}

    t0 = time.time()
    try:
        redis_health = await fast_redis.health_check()
        redis_ok = bool(redis_health.get("healthy"))
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        redis_ok = False
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    log_health_check("redis", redis_ok, checks["redis"].get("latency_ms", 0.0), checks["redis"].get("error"))

    t0 = time.time()
    try:
        db_health = await db_health_check()
        db_ok = bool(db_health.get("healthy", False))
        checks["database"] = {"ok": db_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if not db_ok:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    except Exception as e:
        db_ok = False
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    log_health_check(
        "database", db_ok, checks["database"].get("latency_ms", 0.0), checks["database"].get("error")
    )

    body = {"status": "ready" if db_ok else "not_ready", "checks": checks}
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


@router.get("/scheduler/status")
async def scheduler_status(container: ServiceContainer = Depends(get_container)):
    """Process-lifetime state of the mail sync and reply jobs."""
    return container.sync_scheduler.get_status()
