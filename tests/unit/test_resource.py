from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Optional

import pytest
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from tablerest.domain.resource import Resource, kebab_case, snake_case
from tablerest.errors import ValidationError
from tablerest.validator import BlankValidator, RuleValidator


class RentEvent(BaseModel):
    uuid: str = Field(json_schema_extra={"pk": "true", "validate": "uuid4"})
    user_id: str = Field(json_schema_extra={"belongs_to": "users", "validate": "required"})
    hours: int = Field(0, json_schema_extra={"validate": "gte=0"})
    notes: Optional[str] = Field(None, json_schema_extra={"unsearchable": "true"})
    starting_time: Optional[str] = Field(None, json_schema_extra={"immutable": True})
    created_at: Optional[str] = Field(None, json_schema_extra={"created_at": "true"})
    deleted_at: Optional[str] = Field(None, json_schema_extra={"soft_delete": "true"})


class OrderLine(BaseModel):
    line_id: int = Field(json_schema_extra={"pk": "autoincrement"})
    sku: str = Field(alias="SKU")


class TestConstruction:
    """Descriptor invariants are checked when the resource is built."""

    def test_valid_definition(self, users_resource: Resource, users_definition: dict) -> None:
        assert users_resource.table == "users"
        assert users_resource.primary_key == "uuid"
        assert users_resource.field_names == sorted(users_definition["fields"])
        assert users_resource.managed_fields == ("created_at", "updated_at", "deleted_at")

    def test_resource_is_frozen(self, users_resource: Resource) -> None:
        with pytest.raises(PydanticValidationError):
            users_resource.table = "other"

    @pytest.mark.parametrize(
        "change",
        [
            {"primary_key": "missing"},
            {"soft_delete_field": "missing"},
            {"created_at_field": "missing"},
            {"updated_at_field": "missing"},
            {"table": "users; DROP TABLE users"},
            {"table": "1users"},
        ],
    )
    def test_inconsistent_definitions_are_rejected(self, change: dict, users_definition: dict) -> None:
        with pytest.raises(PydanticValidationError):
            Resource.model_validate({**users_definition, **change})

    def test_field_names_must_be_identifiers(self, users_definition: dict) -> None:
        users_definition["fields"]["name\"--"] = {}
        with pytest.raises(PydanticValidationError):
            Resource.model_validate(users_definition)

    def test_belongs_to_field_must_be_declared(self, rent_events_definition: dict) -> None:
        rent_events_definition["belongs_to_fields"] = [{"table": "users", "field": "owner"}]
        with pytest.raises(PydanticValidationError):
            Resource.model_validate(rent_events_definition)

    def test_unknown_keys_are_rejected(self, users_definition: dict) -> None:
        with pytest.raises(PydanticValidationError):
            Resource.model_validate({**users_definition, "unexpected": True})

    def test_legacy_unsearchable_flag(self, users_definition: dict) -> None:
        users_definition["fields"]["phone"] = {"unsearchable": True}
        resource = Resource.model_validate(users_definition)
        assert not resource.is_searchable("phone")
        assert resource.is_searchable("first_name")


class TestLoaders:
    def test_from_json(self, tmp_path: Path, rent_events_definition: dict) -> None:
        path = tmp_path / "rent_events.json"
        path.write_text(json.dumps(rent_events_definition), encoding="utf-8")

        resource = Resource.from_json(path)

        assert resource.table == "rent_events"
        assert resource.find_belongs_to("users").field == "user_id"
        assert not resource.is_searchable("notes")
        assert resource.is_immutable("starting_time")

    def test_from_model_reads_markers(self) -> None:
        resource = Resource.from_model(RentEvent)

        assert resource.table == "rent_event"
        assert resource.primary_key == "uuid"
        assert not resource.auto_increment
        assert resource.rule_for("hours") == "gte=0"
        assert resource.soft_delete_field == "deleted_at"
        assert resource.created_at_field == "created_at"
        assert resource.updated_at_field is None
        assert not resource.is_searchable("notes")
        assert resource.is_immutable("starting_time")
        assert resource.find_belongs_to("users").field == "user_id"

    def test_from_model_autoincrement_alias_and_table_override(self) -> None:
        resource = Resource.from_model(OrderLine, table="order_lines")

        assert resource.table == "order_lines"
        assert resource.auto_increment
        assert resource.has_field("SKU")
        assert not resource.has_field("sku")

    def test_from_model_requires_primary_key(self) -> None:
        class NoKey(BaseModel):
            name: str

        with pytest.raises(ValueError, match="primary key"):
            Resource.from_model(NoKey)

    def test_from_model_custom_generator(self) -> None:
        resource = Resource.from_model(RentEvent, primary_key_generator=lambda: "fixed")
        assert resource.generate_primary_key() == "fixed"


class TestQueries:
    def test_default_key_is_uuid4(self, users_resource: Resource) -> None:
        key = users_resource.generate_primary_key()
        assert uuid.UUID(key).version == 4

    def test_managed_fields_are_immutable(self, users_resource: Resource) -> None:
        assert users_resource.is_immutable("created_at")
        assert users_resource.is_immutable("deleted_at")
        assert not users_resource.is_immutable("first_name")
        assert not users_resource.is_immutable("unknown")

    def test_route_name_is_kebab_case(self, rent_events_resource: Resource) -> None:
        assert rent_events_resource.route_name == "rent-events"

    @pytest.mark.parametrize(
        ("name", "snake", "kebab"),
        [
            ("RentEvent", "rent_event", "rent-event"),
            ("HTTPRequestLog", "http_request_log", "http-request-log"),
            ("users", "users", "users"),
        ],
    )
    def test_case_conversion(self, name: str, snake: str, kebab: str) -> None:
        assert snake_case(name) == snake
        assert kebab_case(name) == kebab


class TestValidation:
    def test_validate_field_reports_rule(self, users_resource: Resource) -> None:
        with pytest.raises(ValidationError) as excinfo:
            users_resource.validate_field(RuleValidator(), "first_name", "Jo")
        assert excinfo.value.errors == {
            "first_name": "field first_name is invalid for validation rule: required,min=4"
        }

    def test_validate_field_without_rule_accepts_anything(self, users_resource: Resource) -> None:
        users_resource.validate_field(RuleValidator(), "phone", object())

    def test_validate_fields_checks_present_keys_only(self, users_resource: Resource) -> None:
        assert users_resource.validate_fields(RuleValidator(), {"phone": "123"}) == {}
        errors = users_resource.validate_fields(RuleValidator(), {"first_name": "Al"})
        assert set(errors) == {"first_name"}

    def test_validate_all_fields_treats_absent_as_none(self, users_resource: Resource) -> None:
        errors = users_resource.validate_all_fields(RuleValidator(), {"uuid": str(uuid.uuid4())})
        assert set(errors) == {"first_name"}

    def test_validate_all_fields_skips_auto_increment_key(self, counters_resource: Resource) -> None:
        assert counters_resource.validate_all_fields(RuleValidator(), {"label": "x"}) == {}

    def test_blank_validator_accepts_everything(self, users_resource: Resource) -> None:
        assert users_resource.validate_all_fields(BlankValidator(), {}) == {}

    def test_check_rules_names_every_bad_column(self, users_definition: dict) -> None:
        users_definition["fields"]["first_name"]["validator"] = "requird"
        users_definition["fields"]["phone"]["validator"] = "max=ten"
        resource = Resource.model_validate(users_definition)

        with pytest.raises(ValueError) as excinfo:
            resource.check_rules(RuleValidator())

        assert "first_name" in str(excinfo.value)
        assert "phone" in str(excinfo.value)
        resource.check_rules(BlankValidator())

    def test_check_rules_accepts_known_rules(self, rent_events_resource: Resource) -> None:
        rent_events_resource.check_rules(RuleValidator())
