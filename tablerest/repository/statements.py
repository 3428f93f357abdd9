"""
SQL statement construction for the PostgreSQL repository.

Identifiers (table and column names) are taken from the `Resource` only and
double-quoted into the statement text; every value, including single filter
values and the soft-delete timestamp, is a ``%s`` placeholder bound by the
driver. Row and filter keys are looked up in the resource before use, so a
key the resource does not declare can never reach the text.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, NamedTuple, Sequence, Tuple

from tablerest.domain.resource import IDENTIFIER_RE, BelongsTo, Resource
from tablerest.errors import StatementError
from tablerest.repository.codec import encode


class Statement(NamedTuple):
    text: str
    params: Tuple[Any, ...] = ()
    returning: bool = False


def quote(identifier: str) -> str:
    if not IDENTIFIER_RE.match(identifier):
        raise StatementError("invalid identifier")
    return f'"{identifier}"'


def _column_list(resource: Resource) -> str:
    return ", ".join(quote(name) for name in resource.field_names)


def _require_declared(resource: Resource, names: Iterable[str]) -> None:
    unknown = sorted(name for name in names if name not in resource.fields)
    if unknown:
        raise StatementError(f"{len(unknown)} field(s) not declared on resource {resource.table}")


def _live_rows(resource: Resource) -> List[str]:
    if resource.soft_delete_field is None:
        return []
    return [f"{quote(resource.soft_delete_field)} IS NULL"]


def _placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


def select_by_key(resource: Resource, key: Any) -> Statement:
    where = [f"{quote(resource.primary_key)} = %s", *_live_rows(resource)]
    text = (
        f"SELECT {_column_list(resource)} FROM {quote(resource.table)} "
        f"WHERE {' AND '.join(where)} LIMIT 1"
    )
    return Statement(text, (encode(key),))


def insert(resource: Resource, row: Mapping[str, Any]) -> Statement:
    """
    INSERT of the declared columns present in `row`.

    The primary key is left to the store (and returned) when it auto-increments.
    """
    _require_declared(resource, row)
    names = [
        name
        for name in resource.field_names
        if name in row and not (resource.auto_increment and name == resource.primary_key)
    ]
    table = quote(resource.table)
    if names:
        columns = ", ".join(quote(name) for name in names)
        text = f"INSERT INTO {table} ({columns}) VALUES ({_placeholders(len(names))})"
    else:
        text = f"INSERT INTO {table} DEFAULT VALUES"
    if resource.auto_increment:
        text += f" RETURNING {quote(resource.primary_key)}"
    params = tuple(encode(row[name]) for name in names)
    return Statement(text, params, returning=resource.auto_increment)


def update(resource: Resource, row: Mapping[str, Any]) -> Statement:
    """
    UPDATE of the columns present in `row`, keyed by its primary key.

    Columns absent from `row` are not touched. A row holding only the primary
    key produces a no-op assignment so the affected count still reports
    whether the row exists.
    """
    if resource.primary_key not in row:
        raise StatementError("primary key is required for update")
    _require_declared(resource, row)
    names = [name for name in resource.field_names if name in row and name != resource.primary_key]
    if not names:
        names = [resource.primary_key]
    assignments = ", ".join(f"{quote(name)} = %s" for name in names)
    where = [f"{quote(resource.primary_key)} = %s", *_live_rows(resource)]
    text = f"UPDATE {quote(resource.table)} SET {assignments} WHERE {' AND '.join(where)}"
    params = tuple(encode(row[name]) for name in names) + (encode(row[resource.primary_key]),)
    return Statement(text, params)


def delete(resource: Resource, key: Any, now: datetime) -> Statement:
    """Soft delete (write `now`) when the resource declares it, else DELETE."""
    table = quote(resource.table)
    pk = quote(resource.primary_key)
    if resource.soft_delete_field is not None:
        soft = quote(resource.soft_delete_field)
        text = f"UPDATE {table} SET {soft} = %s WHERE {pk} = %s AND {soft} IS NULL"
        return Statement(text, (encode(now), encode(key)))
    return Statement(f"DELETE FROM {table} WHERE {pk} = %s", (encode(key),))


def search(resource: Resource, filters: Mapping[str, Sequence[Any]]) -> Statement:
    """
    SELECT with OR within each field's value list and AND across fields.

    An empty value list matches nothing. Results are ordered by primary key.
    """
    _require_declared(resource, filters)
    clauses: List[str] = []
    params: List[Any] = []
    for name in sorted(filters):
        values = list(filters[name])
        if not values:
            clauses.append("FALSE")
        elif len(values) == 1:
            clauses.append(f"{quote(name)} = %s")
        else:
            clauses.append(f"{quote(name)} IN ({_placeholders(len(values))})")
        params.extend(encode(value) for value in values)
    clauses.extend(_live_rows(resource))

    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    text = (
        f"SELECT {_column_list(resource)} FROM {quote(resource.table)}{where} "
        f"ORDER BY {quote(resource.primary_key)}"
    )
    return Statement(text, tuple(params))


def select_by_foreign_key(resource: Resource, key: Any, belongs_to: BelongsTo) -> Statement:
    return search(resource, {belongs_to.field: [key]})


__all__ = [
    "Statement",
    "delete",
    "insert",
    "quote",
    "search",
    "select_by_foreign_key",
    "select_by_key",
    "update",
]
