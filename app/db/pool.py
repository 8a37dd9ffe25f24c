# app/db/pool.py
"""
PostgreSQL pool for the receptionist store.

One AsyncConnectionPool per process. Connections come back in autocommit
mode with dict rows and a UTC session, so repositories read timestamps as
aware UTC datetimes. Multi-statement writes (profile merge) go through
transaction().
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class DatabasePoolManager:
    """Owns the process-wide connection pool."""

    def __init__(self, conninfo: str | None = None):
        self.conninfo = conninfo or settings.DATABASE_URL
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self, apply_schema: bool | None = None) -> None:
        """Open the pool, verify one round trip and optionally create tables."""
        if self.pool is not None:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )
        try:
            await pool.open(wait=True)
            self.pool = pool
            await self._ping()
            if settings.DB_APPLY_SCHEMA if apply_schema is None else apply_schema:
                await self.apply_schema()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self.pool = None
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Database pool ready", min_size=config["min_size"], max_size=config["max_size"])

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(sql.Literal(f"receptionist-{settings.environment}"))
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '60s'")

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cur = await conn.execute("SELECT 1 AS ok")
            row = await cur.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database connection test returned an unexpected result")

    async def apply_schema(self) -> None:
        """Run schema.sql; every statement in it is idempotent."""
        statements = SCHEMA_PATH.read_text(encoding="utf-8")
        async with self.connection() as conn:
            await conn.execute(statements)
        logger.info("Database schema applied", path=str(SCHEMA_PATH))

    async def close(self) -> None:
        if self.pool is None or self._closed:
            return
        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=30.0)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow an autocommit connection."""
        if not self.is_ready:
            raise RuntimeError("Database pool not initialized")
        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection inside a transaction; rolls back on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.is_ready:
            return {"healthy": False, "service": "database", "error": "Pool not available"}

        try:
            started = time.perf_counter()
            await self._ping()
            stats = self.pool.get_stats()
            return {
                "healthy": True,
                "service": "database",
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "service": "database", "error": str(e)}


db_pool = DatabasePoolManager()


async def get_db_connection():
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
