"""
Error taxonomy for tablerest.

Two families live here:

- Caller-facing errors (`TableRestError` subclasses) raised by the operation
  pipeline. The transport layer maps each one to a status code.
- Repository-level errors (`RepositoryError` subclasses) raised by storage
  backends, the SQL statement builder and the value codec. Repositories only
  distinguish "zero rows affected" and "duplicate key" from everything else;
  the pipeline decides what those mean for the caller.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional


class TableRestError(Exception):
    """Base class for errors surfaced to callers of the pipeline."""


class ValidationError(TableRestError):
    """
    Bad, missing, unknown or immutable field, or a malformed id.

    Carries every problem found in one pass so a client can fix them all in a
    single round trip.
    """

    def __init__(self, errors: Mapping[str, str], message: Optional[str] = None) -> None:
        self.errors: Dict[str, str] = dict(errors)
        if message is None:
            message = "; ".join(f"{field}: {problem}" for field, problem in sorted(self.errors.items()))
        super().__init__(message or "validation failed")

    @classmethod
    def single(cls, field: str, problem: str) -> "ValidationError":
        return cls({field: problem})


class NotFoundError(TableRestError):
    """Nothing matched the primary key on retrieve, update or delete."""


class ConflictError(TableRestError):
    """The primary key already exists on insert."""


class InfrastructureError(TableRestError):
    """Storage failure. The message never exposes driver details."""


class RepositoryError(Exception):
    """Storage backend failure (driver error, malformed statement, bad value)."""


class NoRowsAffectedError(RepositoryError):
    """A write statement matched zero rows."""


class DuplicateKeyError(RepositoryError):
    """An insert collided with an existing primary key."""


class StatementError(RepositoryError):
    """A SQL statement could not be built from the given resource and row."""


class CodecError(RepositoryError):
    """A value could not cross the driver boundary."""


class DecodeError(CodecError):
    """A driver value has no canonical representation."""

    def __init__(self, source_type: str, field: Optional[str] = None) -> None:
        self.source_type = source_type
        self.field = field
        where = f" in field '{field}'" if field else ""
        super().__init__(f"cannot decode value of type {source_type}{where}")


class EncodeError(CodecError):
    """A value cannot be passed to the driver as a statement parameter."""

    def __init__(self, source_type: str) -> None:
        self.source_type = source_type
        super().__init__(f"cannot encode value of type {source_type}")


__all__ = [
    "TableRestError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InfrastructureError",
    "RepositoryError",
    "NoRowsAffectedError",
    "DuplicateKeyError",
    "StatementError",
    "CodecError",
    "DecodeError",
    "EncodeError",
]
