"""Database module for managing connections to PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

import logging
from typing import Optional, Dict, Any
import backoff
import asyncpg

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

# Errors worth retrying while the server is starting or briefly unreachable
CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionRefusedError,
)

def _get_connection_kwargs() -> Dict[str, Any]:
    """Get connection kwargs shared by every pooled connection."""
    return {
        'server_settings': {
            'statement_timeout': '30000',  # 30 seconds
            'application_name': 'marketplace-checkout',
        }
    }

@backoff.on_exception(
    backoff.expo,
    CONNECTION_ERRORS,
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop and recreate all tables

    Returns:
        The initialized connection pool

    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager

    if _pool is not None and not force_recreate:
        return _pool

    try:
        # Import here to avoid circular imports
        from config import get_settings

        url = db_url or get_settings().db_url
        if not url:
            raise ValueError("Database URL not provided")

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,          # Minimum idle connections
            max_size=20,         # Maximum connections
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=60.0,  # 1 minute command timeout
            **_get_connection_kwargs()
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize(force_recreate=force_recreate)
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError']
