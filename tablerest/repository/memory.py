"""
In-memory repository.

A map of tables, each a map from primary key to row, guarded by one lock.
It mirrors the PostgreSQL backend's semantics (stored columns, soft-delete
visibility, OR/AND filter matching, ordering by primary key) so the operation
pipeline can be exercised without a database. Only use it for tests and
local experiments.

Filter values are compared with stored values by canonical text
(`codec.to_text`), without knowing column types. A number matches its
string form, but where PostgreSQL would cast text to the column type the
memory store does not: `"1"` does not match a stored `True`, and
`"2024-01-01 00:00:00"` does not match a stored datetime, whose text is
`"2024-01-01T00:00:00+00:00"`.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from tablerest.domain.resource import Resource
from tablerest.errors import DuplicateKeyError, NoRowsAffectedError, RepositoryError
from tablerest.repository.abstract import AbstractRepository, Filters, Row
from tablerest.repository.codec import decode_row, encode, to_text, utcnow


def _sort_key(value: Any) -> Tuple[int, Any]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (1, to_text(value))


def _matches(stored: Any, wanted: Sequence[Any]) -> bool:
    # NULL never equals anything, as in SQL
    if stored is None:
        return False
    text = to_text(stored)
    return any(candidate is not None and to_text(candidate) == text for candidate in wanted)


class MemoryRepository(AbstractRepository):
    """
    Thread-safe in-memory storage backend.

    Parameters
    ----------
    clock : callable, optional
        Source of the soft-delete timestamp. Defaults to UTC now.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._sequences: Dict[str, int] = {}

    def _table(self, resource: Resource) -> Dict[str, Row]:
        return self._tables.setdefault(resource.table, {})

    @staticmethod
    def _is_live(resource: Resource, row: Row) -> bool:
        return resource.soft_delete_field is None or row.get(resource.soft_delete_field) is None

    @staticmethod
    def _check_declared(resource: Resource, names: Any) -> None:
        unknown = [name for name in names if name not in resource.fields]
        if unknown:
            raise RepositoryError(f"{len(unknown)} field(s) not declared on resource {resource.table}")

    def _live_row(self, resource: Resource, key: Any) -> Optional[Row]:
        row = self._table(resource).get(to_text(key))
        if row is None or not self._is_live(resource, row):
            return None
        return row

    def find(self, resource: Resource, key: Any) -> Row:
        with self._lock:
            row = self._live_row(resource, key)
            return decode_row(row) if row is not None else {}

    def insert(self, resource: Resource, row: Mapping[str, Any]) -> Optional[Any]:
        self._check_declared(resource, row)
        stored = {name: encode(row.get(name)) for name in resource.field_names}
        with self._lock:
            table = self._table(resource)
            if resource.auto_increment:
                key = self._sequences.get(resource.table, 0) + 1
                self._sequences[resource.table] = key
                stored[resource.primary_key] = key
            else:
                key = stored.get(resource.primary_key)
                if key is None:
                    raise RepositoryError("primary key not found")
            if to_text(key) in table:
                raise DuplicateKeyError("primary key already exists")
            table[to_text(key)] = stored
        return key if resource.auto_increment else None

    def update(self, resource: Resource, row: Mapping[str, Any]) -> int:
        if resource.primary_key not in row:
            raise RepositoryError("primary key is required for update")
        self._check_declared(resource, row)
        changes = {name: encode(value) for name, value in row.items() if name != resource.primary_key}
        with self._lock:
            existing = self._live_row(resource, row[resource.primary_key])
            if existing is None:
                return 0
            existing.update(changes)
            return 1

    def delete(self, resource: Resource, key: Any) -> None:
        with self._lock:
            existing = self._live_row(resource, key)
            if existing is None:
                raise NoRowsAffectedError("no rows affected")
            if resource.soft_delete_field is not None:
                existing[resource.soft_delete_field] = self._clock()
            else:
                del self._table(resource)[to_text(key)]

    def search(self, resource: Resource, filters: Filters) -> List[Row]:
        self._check_declared(resource, filters)
        wanted = {name: [encode(value) for value in values] for name, values in filters.items()}
        with self._lock:
            matched = [
                decode_row(row)
                for row in self._table(resource).values()
                if self._is_live(resource, row)
                and all(_matches(row.get(name), values) for name, values in wanted.items())
            ]
        return sorted(matched, key=lambda row: _sort_key(row.get(resource.primary_key)))


__all__ = ["MemoryRepository"]
