"""
Resource descriptors for tablerest.

A `Resource` is the read-only description of one table exposed through the
engine: its columns, primary key, managed timestamp/soft-delete columns,
belongs-to associations and per-column validation rules. It is built once at
startup (from code, a JSON file or an annotated pydantic model) and shared by
every request afterwards.

Identifiers are checked at construction time, which is what allows the SQL
builder to place them in statement text while every value stays a bound
parameter.
"""
from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tablerest.errors import ValidationError
from tablerest.validator import RuleViolation, Validator

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PrimaryKeyGenerator = Callable[[], Any]


def snake_case(name: str) -> str:
    """Convert a CamelCase class name to snake_case."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


def kebab_case(name: str) -> str:
    return snake_case(name).replace("_", "-")


def default_primary_key() -> str:
    return str(uuid.uuid4())


class Column(BaseModel):
    """
    Per-column rules.
    """

    validator: str = Field("", description="Rule string checked by the configured validator.")
    searchable: bool = Field(True, description="Whether the column may be used as a search filter.")
    immutable: bool = Field(False, description="Whether the column may only be set on create.")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_unsearchable(cls, data: Any) -> Any:
        if isinstance(data, dict) and "unsearchable" in data:
            data = dict(data)
            data.setdefault("searchable", not data.pop("unsearchable"))
        return data


class BelongsTo(BaseModel):
    """
    N:1 association: `field` on this resource references a row of `table`.
    """

    table: str
    field: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class Resource(BaseModel):
    """
    Description of a table exposed through the engine.
    """

    table: str = Field(..., description="Backing table name.")
    primary_key: str = Field(..., description="Name of the primary key column.")
    fields: Dict[str, Column] = Field(..., description="Declared columns keyed by name.")
    auto_increment: bool = Field(
        False,
        alias="incremental_pk",
        description="The store assigns the primary key; callers must not supply it.",
    )
    soft_delete_field: Optional[str] = None
    created_at_field: Optional[str] = None
    updated_at_field: Optional[str] = None
    belongs_to: Tuple[BelongsTo, ...] = Field((), alias="belongs_to_fields")
    primary_key_generator: Optional[PrimaryKeyGenerator] = Field(None, exclude=True, repr=False)

    omit_create_route: bool = False
    omit_retrieve_route: bool = False
    omit_update_route: bool = False
    omit_delete_route: bool = False
    omit_search_route: bool = False
    omit_belongs_to_routes: bool = False

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    @model_validator(mode="after")
    def check_consistency(self) -> "Resource":
        identifiers = [self.table, *self.fields, *(assoc.table for assoc in self.belongs_to)]
        for identifier in identifiers:
            if not IDENTIFIER_RE.match(identifier):
                raise ValueError(f"'{identifier}' is not a valid identifier")

        if self.primary_key not in self.fields:
            raise ValueError(f"primary key '{self.primary_key}' is not a declared field")
        for label, name in (
            ("soft delete field", self.soft_delete_field),
            ("created at field", self.created_at_field),
            ("updated at field", self.updated_at_field),
        ):
            if name is not None and name not in self.fields:
                raise ValueError(f"{label} '{name}' is not a declared field")
        for assoc in self.belongs_to:
            if assoc.field not in self.fields:
                raise ValueError(f"belongs-to field '{assoc.field}' is not a declared field")
        return self

    # -- construction helpers -------------------------------------------------

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "Resource":
        """Load a resource from a JSON file."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def from_model(
        cls,
        model: Type[BaseModel],
        table: Optional[str] = None,
        primary_key_generator: Optional[PrimaryKeyGenerator] = None,
    ) -> "Resource":
        """
        Derive a resource from a pydantic model's field annotations.

        Column markers are read from each field's ``json_schema_extra``:

        - ``pk``: ``"true"`` for a caller/engine-assigned key, ``"autoincrement"``
          when the store assigns it
        - ``soft_delete``, ``created_at``, ``updated_at``: managed columns
        - ``validate``: rule string
        - ``unsearchable``, ``immutable``: flags
        - ``belongs_to``: related table name

        The column name is the field alias when set, otherwise the attribute
        name. The table is ``table``, the model's ``__tablename__`` or the
        snake_cased class name, in that order.
        """
        payload: Dict[str, Any] = {
            "table": table or getattr(model, "__tablename__", None) or snake_case(model.__name__),
            "fields": {},
            "belongs_to": [],
            "primary_key_generator": primary_key_generator,
        }
        for attr, info in model.model_fields.items():
            name = info.alias or attr
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            payload["fields"][name] = {
                "validator": str(extra.get("validate", "")),
                "searchable": not _flag(extra.get("unsearchable")),
                "immutable": _flag(extra.get("immutable")),
            }
            pk = str(extra.get("pk", "")).lower()
            if pk in ("autoincrement", "autoincremental"):
                payload["primary_key"] = name
                payload["auto_increment"] = True
            elif _flag(pk):
                payload["primary_key"] = name
            if _flag(extra.get("soft_delete")):
                payload["soft_delete_field"] = name
            if _flag(extra.get("created_at")):
                payload["created_at_field"] = name
            if _flag(extra.get("updated_at")):
                payload["updated_at_field"] = name
            if extra.get("belongs_to"):
                payload["belongs_to"].append({"table": str(extra["belongs_to"]), "field": name})

        if "primary_key" not in payload:
            raise ValueError(f"model {model.__name__} does not mark a primary key")
        return cls.model_validate(payload)

    # -- metadata queries -----------------------------------------------------

    @property
    def route_name(self) -> str:
        return kebab_case(self.table)

    @property
    def field_names(self) -> List[str]:
        """Declared column names in deterministic (sorted) order."""
        return sorted(self.fields)

    @property
    def managed_fields(self) -> Tuple[str, ...]:
        names = (self.created_at_field, self.updated_at_field, self.soft_delete_field)
        return tuple(name for name in names if name is not None)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def is_searchable(self, name: str) -> bool:
        column = self.fields.get(name)
        return column is not None and column.searchable

    def is_immutable(self, name: str) -> bool:
        """Immutable columns and managed columns cannot be set by clients on update."""
        column = self.fields.get(name)
        if column is None:
            return False
        return column.immutable or name in self.managed_fields

    def rule_for(self, name: str) -> str:
        column = self.fields.get(name)
        return column.validator if column is not None else ""

    def find_belongs_to(self, table: str) -> Optional[BelongsTo]:
        for assoc in self.belongs_to:
            if assoc.table == table:
                return assoc
        return None

    # -- validation -----------------------------------------------------------

    def check_rules(self, validator: Validator) -> None:
        """Raise ValueError naming every column whose rule `validator` cannot use."""
        problems = []
        for name, column in self.fields.items():
            if not column.validator:
                continue
            try:
                validator.check_rule(column.validator)
            except ValueError as exc:
                problems.append(f"{name}: {exc}")
        if problems:
            raise ValueError(f"resource {self.table} has invalid rules: " + "; ".join(problems))

    def validate_field(self, validator: Validator, name: str, value: Any) -> None:
        """Raise ValidationError if `value` breaks the rule of column `name`."""
        rule = self.rule_for(name)
        if not rule:
            return
        try:
            validator.validate_one(value, rule)
        except RuleViolation as exc:
            raise ValidationError.single(
                name, f"field {name} is invalid for validation rule: {rule}"
            ) from exc

    def validate_fields(self, validator: Validator, row: Mapping[str, Any]) -> Dict[str, str]:
        """Validate only the keys present in `row` (partial updates)."""
        rules = {name: self.rule_for(name) for name in row if name in self.fields}
        return validator.validate_batch({name: row[name] for name in rules}, rules)

    def validate_all_fields(self, validator: Validator, row: Mapping[str, Any]) -> Dict[str, str]:
        """
        Validate every declared column, substituting None for absent ones, so
        that omitting a required column is reported instead of defaulted.
        """
        values = {
            name: row.get(name)
            for name in self.fields
            if not (self.auto_increment and name == self.primary_key)
        }
        rules = {name: self.rule_for(name) for name in values}
        return validator.validate_batch(values, rules)

    def generate_primary_key(self) -> Any:
        if self.primary_key_generator is not None:
            return self.primary_key_generator()
        return default_primary_key()


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


__all__ = [
    "BelongsTo",
    "Column",
    "PrimaryKeyGenerator",
    "Resource",
    "default_primary_key",
    "kebab_case",
    "snake_case",
]
