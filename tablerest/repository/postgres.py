"""
PostgreSQL repository backed by a psycopg connection pool.

Each call checks a connection out of the pool, runs one statement built by
`tablerest.repository.statements` and returns it; the pool commits on success
and rolls back on error. There are no transactions spanning calls.

Read statements are retried with tenacity on transient operational errors.
Writes are not retried because a lost acknowledgement could otherwise apply
an insert twice.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, List, Mapping, Optional, Tuple

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tablerest.config import get_settings
from tablerest.domain.resource import BelongsTo, Resource
from tablerest.errors import DuplicateKeyError, NoRowsAffectedError, RepositoryError
from tablerest.infrastructure.db_factory import apply_statement_timeout, get_sync_pool
from tablerest.repository import statements
from tablerest.repository.abstract import AbstractRepository, Filters, Row
from tablerest.repository.codec import decode, decode_row, utcnow
from tablerest.repository.statements import Statement
from tablerest.utils.logging import get_logger

log = get_logger(__name__)

_retry_reads = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(psycopg.OperationalError),
    reraise=True,
)


@contextmanager
def _translate_errors(statement: Statement) -> Generator[None, None, None]:
    try:
        yield
    except pg_errors.UniqueViolation as exc:
        raise DuplicateKeyError("primary key already exists") from exc
    except psycopg.Error as exc:
        log.debug("[STATEMENT FAILED] %s", statement.text, extra={"sqlstate": getattr(exc, "sqlstate", None)})
        raise RepositoryError(f"{type(exc).__name__} while executing statement") from exc


class PostgresRepository(AbstractRepository):
    """
    Repository over a psycopg_pool ConnectionPool.

    Parameters
    ----------
    pool : ConnectionPool, optional
        Pool to check connections out of. Defaults to the process-wide pool
        managed by `PoolManager`.
    statement_timeout_ms : int, optional
        Per-statement timeout; defaults to settings.db_statement_timeout_ms.
    clock : callable, optional
        Source of the soft-delete timestamp. Defaults to UTC now.
    """

    def __init__(
        self,
        pool: Optional[ConnectionPool] = None,
        statement_timeout_ms: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self._pool_override = pool
        self.statement_timeout_ms = (
            statement_timeout_ms if statement_timeout_ms is not None else settings.db_statement_timeout_ms
        )
        self._clock = clock or utcnow

    @property
    def pool(self) -> ConnectionPool:
        if self._pool_override is not None:
            return self._pool_override
        return get_sync_pool()

    @_retry_reads
    def _fetch(self, statement: Statement) -> List[Row]:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                apply_statement_timeout(cur, self.statement_timeout_ms)
                cur.execute(statement.text, statement.params)
                return [decode_row(row) for row in cur.fetchall()]

    def _write(self, statement: Statement) -> Tuple[int, Optional[Any]]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                apply_statement_timeout(cur, self.statement_timeout_ms)
                cur.execute(statement.text, statement.params)
                returned = None
                if statement.returning:
                    record = cur.fetchone()
                    returned = decode(record[0]) if record else None
                return cur.rowcount, returned

    def find(self, resource: Resource, key: Any) -> Row:
        statement = statements.select_by_key(resource, key)
        with _translate_errors(statement):
            rows = self._fetch(statement)
        return rows[0] if rows else {}

    def insert(self, resource: Resource, row: Mapping[str, Any]) -> Optional[Any]:
        statement = statements.insert(resource, row)
        with _translate_errors(statement):
            _, generated = self._write(statement)
        return generated

    def update(self, resource: Resource, row: Mapping[str, Any]) -> int:
        statement = statements.update(resource, row)
        with _translate_errors(statement):
            affected, _ = self._write(statement)
        return affected

    def delete(self, resource: Resource, key: Any) -> None:
        statement = statements.delete(resource, key, self._clock())
        with _translate_errors(statement):
            affected, _ = self._write(statement)
        if affected == 0:
            raise NoRowsAffectedError("no rows affected")

    def search(self, resource: Resource, filters: Filters) -> List[Row]:
        statement = statements.search(resource, filters)
        with _translate_errors(statement):
            return self._fetch(statement)

    def find_by_foreign_key(self, resource: Resource, key: Any, belongs_to: BelongsTo) -> List[Row]:
        statement = statements.select_by_foreign_key(resource, key, belongs_to)
        with _translate_errors(statement):
            return self._fetch(statement)


def missing_columns(connection: psycopg.Connection, resource: Resource) -> List[str]:
    """
    Declared columns of `resource` that the current schema does not have.

    Every column is reported when the table itself is missing.
    """
    with connection.cursor() as cur:
        cur.execute(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s",
            (resource.table,),
        )
        present = {row[0] for row in cur.fetchall()}
    return [name for name in resource.field_names if name not in present]


__all__ = ["PostgresRepository", "missing_columns"]
