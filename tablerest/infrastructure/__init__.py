"""
Infrastructure package for tablerest.

Centralizes database connectivity concerns (DSN, pooling, connection retry).
Keep this layer focused on I/O and resource management, decoupled from the
resource/pipeline logic.
"""

from tablerest.infrastructure.db_factory import (
    PoolManager,
    apply_statement_timeout,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)

__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
