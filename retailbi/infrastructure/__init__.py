"""
Infrastructure package for RetailBI.

Centralizes database connectivity concerns (DSN, pooling, retry, statement
timeouts). Keep this layer focused on I/O and resource management, decoupled
from orchestration logic.
"""

from retailbi.infrastructure.db_factory import (
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
