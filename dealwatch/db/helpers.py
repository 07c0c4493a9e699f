"""
Query helpers for the repository layer.

Every helper takes an optional ``connection`` so it can run inside a
transaction opened by the caller; without one it borrows a pooled
connection for the single statement. psycopg errors leave this module as
``DatabaseError``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from dealwatch.db.pool import db_pool
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Worth retrying on the next sweep; anything else is a bug or a schema problem
_TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.errors.LockNotAvailable, psycopg.errors.QueryCanceled)


class DatabaseError(Exception):
    """Raised for any failed database operation."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    operation: str, query: str, connection: psycopg.AsyncConnection | None
) -> AsyncIterator[psycopg.AsyncCursor]:
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                yield cur
        else:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    yield cur
    except psycopg.Error as e:
        recoverable = isinstance(e, _TRANSIENT_ERRORS)
        logger.error(
            "Database query failed",
            operation=operation,
            query=" ".join(query.split())[:120],
            error=str(e),
            sqlstate=e.sqlstate,
            recoverable=recoverable,
        )
        raise DatabaseError(f"Query failed: {e}", operation=operation, recoverable=recoverable) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    async with _cursor("fetch_one", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _cursor("fetch_all", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write statement and return the affected row count."""
    async with _cursor("execute", query, connection) as cur:
        await cur.execute(query, params)
        return cur.rowcount
