# app/db/pool.py
"""
PostgreSQL connection pool manager using psycopg_pool.
Backs the feedback store read/write capabilities.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabasePoolManager:
    """
    Database connection pool manager with lazy startup and graceful shutdown.
    """

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        """Initialize the connection pool on application startup."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return

        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        logger.info("Initializing database connection pool", **pool_config)

        self.pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            kwargs={"row_factory": dict_row},
            **pool_config,
        )
        await self.pool.open()
        self._initialized = True

        logger.info("Database pool initialized", max_size=pool_config["max_size"])

    async def close(self) -> None:
        """Close the pool; safe to call more than once."""
        if self.pool and not self._closed:
            await self.pool.close()
            logger.info("Database pool closed")
        self._closed = True
        self._initialized = False

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection from the pool.

        Usage:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
        """
        if not self._initialized:
            await self.initialize()

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection wrapped in a transaction."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        try:
            async with self.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1 AS ok")
                    row = await cur.fetchone()
            return {"healthy": bool(row and row.get("ok") == 1), "service": "postgres"}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "service": "postgres", "error": str(e)}


db_pool = DatabasePoolManager()
