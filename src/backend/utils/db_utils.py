"""Database utilities for the conversation store.

Provides:
- Connection pool factory
- Retry decorator for transient connection failures
- Pool health check and graceful close used by the app lifespan
"""

from __future__ import annotations

import asyncio
import functools
import random

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import asyncpg

from utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

#: application_name reported to PostgreSQL (visible in pg_stat_activity)
APPLICATION_NAME = "chatmcp-orchestrator"


class PoolUnavailable(Exception):
    """The pool could not be created or a connection could not be acquired in time."""


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
    statement_cache_size: int = 100,
    max_inactive_connection_lifetime: float = 300.0,
) -> asyncpg.Pool:
    """Create the asyncpg pool used for conversations and messages.

    Each connection gets a server-side statement and lock timeout equal to
    ``command_timeout`` so a stuck query cannot hold a connection forever.

    Raises:
        PoolUnavailable: If initial connections cannot be established
    """
    timeout_ms = int(command_timeout * 1000)

    async def init_connection(conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = '{timeout_ms}'")
        await conn.execute(f"SET lock_timeout = '{timeout_ms}'")

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                statement_cache_size=statement_cache_size,
                max_inactive_connection_lifetime=max_inactive_connection_lifetime,
                server_settings={"application_name": APPLICATION_NAME},
                init=init_connection,
            ),
            timeout=connection_timeout,
        )
    except TimeoutError as e:
        raise PoolUnavailable(f"Connection pool creation timed out after {connection_timeout}s") from e
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        raise PoolUnavailable(f"Failed to create connection pool: {e}") from e

    if pool is None:
        raise PoolUnavailable("Failed to create connection pool")
    return pool


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection, translating acquire timeouts into PoolUnavailable."""
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except TimeoutError as e:
        raise PoolUnavailable(f"Could not acquire database connection within {timeout}s") from e


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retryable_exceptions: tuple[type[Exception], ...] = (
        asyncpg.PostgresConnectionError,
        asyncpg.InterfaceError,
        PoolUnavailable,
    ),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async database operation on connection-level failures.

    Exponential backoff with jitter. Only use on idempotent operations.

    Example:
        @with_retry(max_attempts=3)
        async def list_conversations(self, user_id): ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(f"Database operation failed after {max_attempts} attempts: {e}")
                        raise

                    delay = min(base_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.5), max_delay)
                    logger.warning(
                        f"Database operation failed (attempt {attempt}/{max_attempts}), retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Run ``SELECT 1`` and report pool statistics."""
    try:
        async with acquire_connection(pool, timeout=5.0) as conn:
            is_healthy = await conn.fetchval("SELECT 1") == 1
    except (PoolUnavailable, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        logger.warning(f"Database health check failed: {e}")
        is_healthy = False

    return {
        "healthy": is_healthy,
        "pool_size": pool.get_size(),
        "free_connections": pool.get_idle_size(),
        "used_connections": pool.get_size() - pool.get_idle_size(),
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Wait up to ``timeout`` seconds for checked-out connections, then close the pool."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while pool.get_size() > pool.get_idle_size():
        if loop.time() > deadline:
            logger.warning(
                f"Timeout waiting for connections to drain, "
                f"forcing close ({pool.get_size() - pool.get_idle_size()} active)"
            )
            break
        await asyncio.sleep(0.1)

    await pool.close()
