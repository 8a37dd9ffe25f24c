# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class FastRedisClient:
    """Pooled Redis client used for cross-process job leases."""

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=20,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    @property
    def is_ready(self) -> bool:
        return self._initialized

    async def ping(self) -> bool:
        try:
            if not self._initialized:
                return False
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def acquire_lease(self, key: str, token: str, ttl_s: int) -> bool | None:
        """
        Take a lease on `key` for `ttl_s` seconds (SET NX EX).

        Returns:
            True if acquired, False if another holder has it,
            None if Redis is unavailable
        """
        if not self._initialized:
            return None
        try:
            return bool(await self.client.set(key, token, nx=True, ex=ttl_s))
        except Exception as e:
            logger.warning("Redis lease acquire failed", key=key, error=str(e))
            return None

    async def release_lease(self, key: str, token: str) -> bool:
        """Release a lease if we still hold it."""
        if not self._initialized:
            return False
        try:
            return bool(await self.client.eval(_RELEASE_SCRIPT, 1, key, token))
        except Exception as e:
            logger.warning("Redis lease release failed", key=key, error=str(e))
            return False

    async def health_check(self) -> dict:
        ping_success = await self.ping()
        return {
            "healthy": ping_success,
            "ping": ping_success,
            "service": "redis",
        }


# Global instance
fast_redis = FastRedisClient()
