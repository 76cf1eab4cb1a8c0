"""
Async database connection pool using asyncpg.

A single primary pool serves both the conversation memory store (read/write)
and the pgvector similarity queries (read-only). The pgvector codec is
registered on every new connection so embeddings can be passed as plain
Python sequences; the extension itself is created once, before the pool.
"""
from typing import Optional

import asyncpg

from ragrelay.core.logging import get_logger

logger = get_logger(__name__)

_primary_pool: Optional[asyncpg.Pool] = None


async def _init_connection(connection: asyncpg.Connection) -> None:
    """Encode Python float sequences as pgvector text literals."""
    await connection.set_type_codec(
        "vector",
        encoder=lambda values: "[" + ",".join(repr(float(v)) for v in values) + "]",
        decoder=lambda text: [float(v) for v in text.strip("[]").split(",") if v],
        schema="public",
        format="text",
    )


async def ensure_vector_extension(database_url: str) -> None:
    """
    Install pgvector on a one-off connection.

    Must run before the pool exists: the per-connection codec registration
    fails on a database that has no ``vector`` type yet.
    """
    connection = await asyncpg.connect(database_url)
    try:
        await connection.execute("CREATE EXTENSION IF NOT EXISTS vector")
    finally:
        await connection.close()
    logger.info("db_vector_extension_ready")


async def initialize_database_pool(database_url: str, command_timeout: float = 30) -> bool:
    """
    Initialize the primary database connection pool.

    Returns:
        True if initialization successful, False otherwise
    """
    global _primary_pool

    try:
        logger.info("db_pool_initializing", url_prefix=database_url[:30])
        await ensure_vector_extension(database_url)
        _primary_pool = await asyncpg.create_pool(
            database_url,
            min_size=2,
            max_size=20,
            max_queries=50000,
            max_inactive_connection_lifetime=3600,
            command_timeout=command_timeout,
            init=_init_connection,
        )
        logger.info("db_pool_initialized")
        return True

    except Exception as e:
        logger.error(
            "db_pool_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _primary_pool = None
        return False


async def close_database_pool() -> None:
    """Close the database connection pool."""
    global _primary_pool

    if _primary_pool:
        try:
            await _primary_pool.close()
            logger.info("db_pool_closed")
        except Exception as e:
            logger.error("db_pool_close_failed", error=str(e))
        finally:
            _primary_pool = None


def get_primary_pool() -> Optional[asyncpg.Pool]:
    """Get primary database connection pool."""
    return _primary_pool
