"""
Repository interfaces for tablerest.

Storage backends implement the `Repository` protocol (or subclass
`AbstractRepository`) so the operation pipeline can run unchanged against
PostgreSQL or the in-memory store. Every method receives the `Resource`
describing the table it operates on; backends hold no per-table state beyond
what the store itself keeps.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from tablerest.domain.resource import BelongsTo, Resource

Row = Dict[str, Any]
Filters = Mapping[str, Sequence[Any]]


@runtime_checkable
class Repository(Protocol):
    """
    Storage-operation contract shared by all backends.

    Backends never decide caller-facing outcomes; they only report "zero rows
    affected" (`NoRowsAffectedError`), duplicate keys (`DuplicateKeyError`) and
    other failures (`RepositoryError`).
    """

    def find(self, resource: Resource, key: Any) -> Row:
        """
        Return the row with primary key `key`, or an empty dict when absent.
        """
        ...

    def insert(self, resource: Resource, row: Mapping[str, Any]) -> Optional[Any]:
        """
        Insert `row`. It must hold the primary key unless the key auto-increments.

        Returns
        -------
        Any | None
            The store-assigned key for auto-increment resources, else None.
        """
        ...

    def update(self, resource: Resource, row: Mapping[str, Any]) -> int:
        """
        Write the fields present in `row` (which must hold the primary key).

        Absent fields are left untouched. Returns the number of affected rows.
        """
        ...

    def delete(self, resource: Resource, key: Any) -> None:
        """
        Delete (or soft delete) the row with primary key `key`.

        Raises NoRowsAffectedError when nothing matched.
        """
        ...

    def search(self, resource: Resource, filters: Filters) -> List[Row]:
        """
        Rows matching every filter field (OR within each field's value list),
        ordered by primary key.
        """
        ...

    def find_by_foreign_key(self, resource: Resource, key: Any, belongs_to: BelongsTo) -> List[Row]:
        """Rows whose `belongs_to.field` equals `key`."""
        ...


class AbstractRepository(abc.ABC):
    """
    Optional ABC helper for class-based backends.

    Subclasses implement the five primitive operations; the foreign-key lookup
    is a single-filter search by default.
    """

    @abc.abstractmethod
    def find(self, resource: Resource, key: Any) -> Row:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def insert(self, resource: Resource, row: Mapping[str, Any]) -> Optional[Any]:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def update(self, resource: Resource, row: Mapping[str, Any]) -> int:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, resource: Resource, key: Any) -> None:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def search(self, resource: Resource, filters: Filters) -> List[Row]:  # pragma: no cover
        raise NotImplementedError

    def find_by_foreign_key(self, resource: Resource, key: Any, belongs_to: BelongsTo) -> List[Row]:
        return self.search(resource, {belongs_to.field: [key]})


__all__ = [
    "AbstractRepository",
    "Filters",
    "Repository",
    "Row",
]
