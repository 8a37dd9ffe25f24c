# app/main.py
"""
Receptionist API: channel endpoints, webhooks, meetings and profiles.

Startup order is database pool, Redis, services, scheduler; shutdown runs
the same steps in reverse.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import channels, health, meetings, profiles, webhooks
from app.services.container import build_container
from app.services.redis_client import fast_redis

setup_logging(log_level=settings.log_level, json_logs=settings.environment != "development")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    try:
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")
    except RuntimeError as e:
        # Job leases fall back to process-local locks
        logger.warning("Redis unavailable, continuing without it", error=str(e))

    container = build_container(redis=fast_redis if fast_redis.is_ready else None)
    app.state.container = container
    startup_tasks.append("services")

    if settings.SCHEDULER_ENABLED:
        container.sync_scheduler.start()
        startup_tasks.append("sync_scheduler")

    logger.info("All services initialized successfully", services=startup_tasks)

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    try:
        await container.close()
    except Exception as e:
        logger.error("Error closing services", error=str(e))
        shutdown_errors.append(f"Services: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Receptionist",
    description="Multi-channel customer communication with meeting scheduling",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(channels.router)
app.include_router(webhooks.router)
app.include_router(meetings.router)
app.include_router(profiles.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        account_id=request.headers.get("x-account-id"),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
