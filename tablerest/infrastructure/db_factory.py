"""
Database connection factory utilities for tablerest.

`PostgresRepository` checks connections out of one process-wide pool owned by
`PoolManager`; one-off tasks (the CLI schema check) open a dedicated
connection through `get_sync_connection`. Every session runs in UTC so
timestamps without a zone decode consistently.

Connecting is retried with tenacity; statements are not retried here.
"""

from __future__ import annotations

import atexit
import threading
from typing import Any, Dict, Optional

import psycopg
from psycopg import Connection, Cursor
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tablerest.config import Settings, get_settings
from tablerest.utils.logging import get_logger

log = get_logger(__name__)

CONNECTION_KWARGS: Dict[str, Any] = {"options": "-c timezone=UTC"}


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


class PoolManager:
    """
    Process-wide owner of the repository connection pool.

    The first call to `get_sync_pool` opens the pool (sized from settings
    unless overridden); it is closed by `close_all`, which also runs at
    interpreter exit.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_sync_pool(
        self,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        dsn: Optional[str] = None,
    ) -> ConnectionPool:
        """
        Return the shared pool, opening it on first use.

        Parameters
        ----------
        min_size : int, optional
            Connections kept open. Defaults to settings.db_pool_min_size.
        max_size : int, optional
            Upper bound on connections. Defaults to settings.db_pool_max_size.
        dsn : str, optional
            Connection string. Defaults to one built from settings.

        Arguments are only honoured by the call that opens the pool.
        """
        with self._lock:
            if self._pool is None:
                settings = get_settings()
                self._pool = ConnectionPool(
                    conninfo=dsn or build_dsn(settings),
                    min_size=min_size or settings.db_pool_min_size,
                    max_size=max_size or settings.db_pool_max_size,
                    kwargs=dict(CONNECTION_KWARGS),
                    open=True,
                )
                log.info(
                    "[POOL OPEN]",
                    extra={"min_size": self._pool.min_size, "max_size": self._pool.max_size},
                )
            return self._pool

    def close_all(self) -> None:
        with self._lock:
            if self._pool is None:
                return
            try:
                self._pool.close()
            except psycopg.Error:
                log.warning("[POOL CLOSE FAILED]", exc_info=True)
            finally:
                self._pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Open a dedicated connection, retrying transient connection failures.

    The caller owns the connection and must close it (use it as a context
    manager). Repositories use the pool instead.
    """
    return psycopg.connect(dsn or build_dsn(), **CONNECTION_KWARGS)


def get_sync_pool(min_size: Optional[int] = None, max_size: Optional[int] = None) -> ConnectionPool:
    return PoolManager().get_sync_pool(min_size=min_size, max_size=max_size)


def apply_statement_timeout(cursor: Cursor, timeout_ms: Optional[int]) -> None:
    """
    Bound the duration of statements on the cursor's session.

    A falsy timeout leaves the server default in place.
    """
    if not timeout_ms:
        return
    cursor.execute("SELECT set_config('statement_timeout', %s, false)", (str(int(timeout_ms)),))


__all__ = [
    "CONNECTION_KWARGS",
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
