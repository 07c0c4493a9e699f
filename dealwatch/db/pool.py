# dealwatch/db/pool.py
"""
PostgreSQL connection pool shared by the API process and the worker.

The expiration engine never touches the pool directly; it is handed
``db_is_ready`` and asks it once per sweep whether the database answers.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from dealwatch.config import settings
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

READINESS_TIMEOUT_SECONDS = 3.0
CLOSE_TIMEOUT_SECONDS = 30.0
HIGH_UTILIZATION_PERCENT = 80


class DatabasePoolManager:
    """Lifecycle, connections and probes for one AsyncConnectionPool."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    def _unavailable_reason(self) -> str | None:
        if not self._initialized:
            return "Pool not initialized"
        if self._closed:
            return "Pool is closed"
        return None

    async def initialize(self) -> None:
        """Open the pool and verify one round trip before serving."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")
        if not settings.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not configured")

        pool_config = settings.get_db_pool_config()
        logger.info("Opening database pool", min_size=pool_config["min_size"], max_size=pool_config["max_size"])

        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )
        try:
            await pool.open()
            await pool.wait()
            self.pool = pool
            self._initialized = True
            if not await self._probe():
                raise RuntimeError("SELECT 1 returned an unexpected result")
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            self.pool = None
            try:
                await pool.close()
            except Exception as close_error:
                logger.debug("Error closing half-open pool", error=str(close_error))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Database pool ready", timeout=pool_config["timeout"])

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        # dict rows, autocommit and UTC are assumed by every repository query
        conn.row_factory = dict_row
        try:
            await conn.set_autocommit(True)
            await conn.execute(
                sql.SQL("SET application_name = {}").format(sql.Literal(f"dealwatch-{settings.environment}"))
            )
            await conn.execute("SET timezone = 'UTC'")
            await conn.execute("SET statement_timeout = '60s'")
        except Exception:
            logger.exception("Failed to configure database connection")

    async def _probe(self) -> bool:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        value = row["ok"] if isinstance(row, dict) else row[0]
        return value == 1

    async def close(self) -> None:
        if self._unavailable_reason():
            return

        logger.info("Closing database pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout_seconds=CLOSE_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a pooled connection.

        Usage:
            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        reason = self._unavailable_reason()
        if reason:
            raise RuntimeError(reason)

        try:
            async with self.pool.connection() as conn:
                yield conn
        except Exception as e:
            logger.error("Database connection error", error=str(e), error_type=type(e).__name__)
            raise

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Connection inside a transaction: commit on exit, rollback on error."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def is_ready(self) -> bool:
        """
        True when the pool is open and answers SELECT 1 within
        READINESS_TIMEOUT_SECONDS. Never raises.
        """
        if not self.initialized or self.pool is None:
            return False

        try:
            async with asyncio.timeout(READINESS_TIMEOUT_SECONDS):
                return await self._probe()
        except Exception as e:
            logger.warning("Database readiness probe failed", error=str(e), error_type=type(e).__name__)
            return False

    def _pool_stats(self) -> dict[str, Any]:
        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        utilization = (size - available) / size * 100 if size else 0.0
        return {
            "pool_size": size,
            "pool_available": available,
            "pool_utilization_percent": round(utilization, 2),
            "requests_waiting": stats.get("requests_waiting", 0),
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Probe result plus pool statistics.

        Returns:
            dict: ``healthy``, ``service``, and either ``error`` or
            ``connection_time_ms`` with ``pool_stats`` (and ``warnings``
            when the pool is nearly exhausted)
        """
        reason = self._unavailable_reason()
        if reason:
            return {"healthy": False, "error": reason, "service": "database_pool"}

        started = time.perf_counter()
        ready = await self.is_ready()
        health = {
            "healthy": ready,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        if not ready:
            health["error"] = "Connection test failed"
            return health

        health["pool_stats"] = self._pool_stats()
        utilization = health["pool_stats"]["pool_utilization_percent"]
        if utilization > HIGH_UTILIZATION_PERCENT:
            health["warnings"] = [f"High pool utilization: {utilization:.1f}%"]
        return health


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()


async def db_is_ready() -> bool:
    """Readiness probe injected into the expiration engine."""
    return await db_pool.is_ready()
