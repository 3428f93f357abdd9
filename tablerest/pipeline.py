"""
Operation pipeline: per-verb policy applied before storage is touched.

Usage:
    from tablerest.pipeline import ResourceOperations
    from tablerest.repository import MemoryRepository

    users = ResourceOperations(user_resource, MemoryRepository())
    key = users.create({"first_name": "Joseph", "phone": "123"})
    row = users.retrieve(key["uuid"])

Each verb applies the rules derived from the resource (primary-key injection
and checks, managed timestamps, soft-delete initialisation, immutable and
unknown field rejection, null-filling on full replace, searchability) and
then delegates to the repository. Repository failures are classified here:
zero affected rows become `NotFoundError`, duplicate keys `ConflictError`,
anything else is logged and re-raised as `InfrastructureError`.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional, Sequence, Union

from tablerest.domain.resource import BelongsTo, Resource
from tablerest.errors import (
    ConflictError,
    DuplicateKeyError,
    InfrastructureError,
    NoRowsAffectedError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from tablerest.repository.abstract import Repository, Row
from tablerest.repository.codec import is_scalar, utcnow
from tablerest.utils.logging import get_logger
from tablerest.validator import RuleValidator, Validator

log = get_logger(__name__)


class ResourceOperations:
    """
    Create, retrieve, update, delete, search and belongs-to lookups for one
    resource.

    Parameters
    ----------
    resource : Resource
        Descriptor of the table. Shared and read-only.
    repository : Repository
        Storage backend.
    validator : Validator, optional
        Rule checker; defaults to `RuleValidator`.
    clock : callable, optional
        Source of managed timestamps. Defaults to UTC now.

    Raises ValueError when a column rule is not understood by `validator`.
    """

    def __init__(
        self,
        resource: Resource,
        repository: Repository,
        validator: Optional[Validator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.resource = resource
        self.repository = repository
        self.validator = validator or RuleValidator()
        self._clock = clock or utcnow
        resource.check_rules(self.validator)

    @contextmanager
    def _storage(self, operation: str) -> Generator[None, None, None]:
        try:
            yield
        except NoRowsAffectedError as exc:
            raise NotFoundError("not found") from exc
        except DuplicateKeyError as exc:
            raise ConflictError("primary key already exists") from exc
        except RepositoryError as exc:
            log.exception(
                f"[STORAGE FAILED] {operation} {self.resource.table}",
                extra={"resource": self.resource.table, "operation": operation},
            )
            raise InfrastructureError("storage operation failed") from exc

    def _reject(self, operation: str, errors: Dict[str, str]) -> None:
        if errors:
            log.debug(
                f"[REJECTED] {operation} {self.resource.table}",
                extra={"resource": self.resource.table, "operation": operation, "fields": sorted(errors)},
            )
            raise ValidationError(errors)

    def _unknown_fields(self, payload: Mapping[str, Any]) -> Dict[str, str]:
        return {name: "not in the model" for name in payload if not self.resource.has_field(name)}

    def _declared_scalars(self, payload: Mapping[str, Any], errors: Dict[str, str]) -> Dict[str, Any]:
        """Declared fields of `payload`; nested values are reported in `errors` and left out."""
        row: Dict[str, Any] = {}
        for name, value in payload.items():
            if not self.resource.has_field(name):
                continue
            if not is_scalar(value):
                errors[name] = "must be a scalar value"
                continue
            row[name] = value
        return row

    def _validate_key(self, operation: str, key: Any) -> None:
        if not is_scalar(key):
            self._reject(operation, {self.resource.primary_key: "must be a scalar value"})
        try:
            self.resource.validate_field(self.validator, self.resource.primary_key, key)
        except ValidationError as exc:
            self._reject(operation, exc.errors)

    def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Insert a new row and return ``{primary_key: key}``.

        The key is generated unless the store assigns it. Every declared field
        is validated, absent ones as None, so omitting a required field fails.
        """
        resource = self.resource
        pk = resource.primary_key
        errors = self._unknown_fields(payload)
        row = self._declared_scalars(payload, errors)

        if resource.auto_increment:
            if pk in row:
                errors[pk] = "assigned by the store"
            row.pop(pk, None)
        else:
            row[pk] = resource.generate_primary_key()

        now = self._clock()
        for name in (resource.created_at_field, resource.updated_at_field):
            if name is not None:
                row[name] = now
        if resource.soft_delete_field is not None:
            row[resource.soft_delete_field] = None

        for name, problem in resource.validate_all_fields(self.validator, row).items():
            errors.setdefault(name, problem)
        self._reject("create", errors)

        with self._storage("create"):
            generated = self.repository.insert(resource, row)
        key = generated if resource.auto_increment else row[pk]
        log.info(f"[CREATE] {resource.table}", extra={"resource": resource.table})
        return {pk: key}

    def retrieve(self, key: Any) -> Row:
        self._validate_key("retrieve", key)
        with self._storage("retrieve"):
            row = self.repository.find(self.resource, key)
        if not row:
            raise NotFoundError("not found")
        return row

    def update(self, payload: Mapping[str, Any], replace: bool = False) -> int:
        """
        Update an existing row identified by the primary key in `payload`.

        With ``replace=False`` (PATCH) only the supplied fields are written.
        With ``replace=True`` (PUT) every declared, mutable field missing from
        the payload is written as None.
        """
        resource = self.resource
        pk = resource.primary_key
        operation = "replace" if replace else "update"
        if pk not in payload:
            self._reject(operation, {pk: "primary key is required"})

        errors = self._unknown_fields(payload)
        for name in payload:
            if name != pk and resource.is_immutable(name):
                errors[name] = "field is immutable"
        row = self._declared_scalars(payload, errors)

        if resource.updated_at_field is not None:
            row[resource.updated_at_field] = self._clock()
        if replace:
            for name in resource.field_names:
                if name not in row and name != pk and not resource.is_immutable(name):
                    row[name] = None

        for name, problem in resource.validate_fields(self.validator, row).items():
            errors.setdefault(name, problem)
        self._reject(operation, errors)

        with self._storage(operation):
            affected = self.repository.update(resource, row)
        if affected == 0:
            raise NotFoundError("not found")
        log.info(f"[UPDATE] {resource.table}", extra={"resource": resource.table, "replace": replace})
        return affected

    def replace(self, payload: Mapping[str, Any]) -> int:
        return self.update(payload, replace=True)

    def delete(self, key: Any) -> None:
        self._validate_key("delete", key)
        with self._storage("delete"):
            self.repository.delete(self.resource, key)
        log.info(
            f"[DELETE] {self.resource.table}",
            extra={"resource": self.resource.table, "soft": self.resource.soft_delete_field is not None},
        )

    def search(self, filters: Mapping[str, Union[Sequence[Any], Any]]) -> List[Row]:
        """
        Rows matching every filter field, any value within a field.

        Filter keys must be searchable fields and values must satisfy the
        field's rule. An empty result is an empty list, not an error.
        """
        resource = self.resource
        errors: Dict[str, str] = {}
        normalized: Dict[str, List[Any]] = {}
        for name, values in filters.items():
            if not resource.is_searchable(name):
                errors[name] = "field is not searchable"
                continue
            values = list(values) if isinstance(values, (list, tuple)) else [values]
            for value in values:
                if not is_scalar(value):
                    errors[name] = "must be a scalar value"
                    break
                try:
                    resource.validate_field(self.validator, name, value)
                except ValidationError as exc:
                    errors.update(exc.errors)
                    break
            normalized[name] = values
        self._reject("search", errors)

        with self._storage("search"):
            rows = self.repository.search(resource, normalized)
        log.debug(f"[SEARCH] {resource.table}", extra={"resource": resource.table, "rows": len(rows)})
        return rows

    def belongs_to(self, key: Any, association: Union[BelongsTo, str]) -> List[Row]:
        """
        Rows of this resource whose foreign field references `key`.

        `association` is one of the resource's `BelongsTo` entries or the
        related table's name.
        """
        resource = self.resource
        if isinstance(association, BelongsTo):
            assoc: Optional[BelongsTo] = association if association in resource.belongs_to else None
            related = association.table
        else:
            assoc = resource.find_belongs_to(association)
            related = association
        if assoc is None:
            self._reject("belongs_to", {related: f"{resource.table} does not belong to {related}"})

        self._validate_key("belongs_to", key)
        with self._storage("belongs_to"):
            return self.repository.find_by_foreign_key(resource, key, assoc)


__all__ = ["ResourceOperations"]
