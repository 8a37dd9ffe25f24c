"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool and Redis, builds the services and
delegates to the requested job.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.services.container import ServiceContainer, build_container
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[ServiceContainer], Awaitable[object]]


async def run_mail_sync(container: ServiceContainer) -> dict:
    """Single mail sync tick."""
    return await container.sync_scheduler.mail_sync.run_once()


async def run_reply_processing(container: ServiceContainer) -> dict:
    """Single outbound reply tick."""
    return await container.sync_scheduler.reply_processing.run_once()


async def run_sync_scheduler(container: ServiceContainer) -> None:
    """Both timers, until the process is stopped."""
    await container.sync_scheduler.run_forever()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "mail_sync": run_mail_sync,
    "reply_processing": run_reply_processing,
    "sync_scheduler": run_sync_scheduler,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "sync_scheduler").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        try:
            await fast_redis.initialize()
        except RuntimeError as e:
            logger.warning("Redis unavailable; job leases are process-local", error=str(e))

        container = build_container(redis=fast_redis if fast_redis.is_ready else None)
        try:
            result = await JOB_REGISTRY[name](container)
            if result is not None:
                logger.info("Background job finished", job=name, result=result)
        finally:
            await container.close()
    finally:
        await fast_redis.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.log_level, json_logs=settings.environment != "development")
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
