from __future__ import annotations

import json
from pathlib import Path
from typing import List, Tuple

import pytest
import typer
from typer.testing import CliRunner

from tablerest import main
from tablerest.domain.resource import Resource
from tablerest.pipeline import ResourceOperations
from tablerest.repository.memory import MemoryRepository

WIDE_TERMINAL = {"COLUMNS": "200"}

runner = CliRunner()


class _FakeCursor:
    def __init__(self, columns: List[str]) -> None:
        self._columns = columns

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    def execute(self, query: str, params: Tuple[str, ...]) -> None:
        del query, params

    def fetchall(self) -> List[Tuple[str]]:
        return [(name,) for name in self._columns]


class _FakeConnection:
    def __init__(self, columns: List[str]) -> None:
        self._columns = columns
        self.closed = False

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        self.closed = True

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self._columns)


@pytest.fixture
def users_file(tmp_path: Path, users_definition: dict) -> Path:
    path = tmp_path / "users.json"
    path.write_text(json.dumps(users_definition), encoding="utf-8")
    return path


@pytest.fixture
def rent_events_file(tmp_path: Path, rent_events_definition: dict) -> Path:
    path = tmp_path / "rent_events.json"
    path.write_text(json.dumps(rent_events_definition), encoding="utf-8")
    return path


@pytest.fixture
def memory_backend(monkeypatch: pytest.MonkeyPatch) -> MemoryRepository:
    """Route the CLI's database-backed commands to one in-memory store."""
    repository = MemoryRepository()
    monkeypatch.setattr(main, "PostgresRepository", lambda: repository)
    return repository


def test_info_prints_settings() -> None:
    result = runner.invoke(main.app, ["info"])
    assert result.exit_code == 0
    assert "pool=(" in result.stdout


def test_describe_lists_columns(users_file: Path) -> None:
    result = runner.invoke(main.app, ["describe", str(users_file)], env=WIDE_TERMINAL)
    assert result.exit_code == 0
    assert "first_name" in result.stdout
    assert "required,min=4" in result.stdout
    assert "soft_delete" in result.stdout


def test_describe_unreadable_file(tmp_path: Path) -> None:
    result = runner.invoke(main.app, ["describe", str(tmp_path / "missing.json")])
    assert result.exit_code == 2


def test_describe_invalid_resource(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"table": "t", "primary_key": "id", "fields": {}}), encoding="utf-8")
    result = runner.invoke(main.app, ["describe", str(path)])
    assert result.exit_code == 2


def test_describe_rejects_unknown_rule(tmp_path: Path, users_definition: dict) -> None:
    users_definition["fields"]["first_name"]["validator"] = "requird"
    path = tmp_path / "users.json"
    path.write_text(json.dumps(users_definition), encoding="utf-8")

    result = runner.invoke(main.app, ["describe", str(path)])

    assert result.exit_code == 2


def test_routes_lists_belongs_to(users_file: Path, rent_events_file: Path) -> None:
    result = runner.invoke(main.app, ["routes", str(users_file), str(rent_events_file)], env=WIDE_TERMINAL)
    assert result.exit_code == 0
    assert "/users/{id}/rent-events" in result.stdout


def test_get_and_search_as_json(users_file: Path, memory_backend: MemoryRepository) -> None:
    ops = ResourceOperations(Resource.from_json(users_file), memory_backend)
    key = ops.create({"first_name": "Joseph", "phone": "1"})["uuid"]
    ops.create({"first_name": "Maria", "phone": "2"})

    fetched = runner.invoke(main.app, ["get", str(users_file), key, "--json"])
    found = runner.invoke(main.app, ["search", str(users_file), "-w", "phone=1", "-w", "phone=2", "--json"])

    assert fetched.exit_code == 0
    assert json.loads(fetched.stdout)["first_name"] == "Joseph"
    assert found.exit_code == 0
    assert sorted(row["first_name"] for row in json.loads(found.stdout)) == ["Joseph", "Maria"]


def test_get_missing_row_exits_nonzero(users_file: Path, memory_backend: MemoryRepository) -> None:
    result = runner.invoke(main.app, ["get", str(users_file), "0b8f8f6e-6b1a-4c1e-9a56-6c7f54b5d1c2"])
    assert result.exit_code == 1


def test_parse_filters_groups_repeated_fields() -> None:
    assert main._parse_filters(["phone=1", "phone=2", "first_name=Jo=e"]) == {
        "phone": ["1", "2"],
        "first_name": ["Jo=e"],
    }


def test_parse_filters_rejects_malformed_items() -> None:
    with pytest.raises(typer.BadParameter):
        main._parse_filters(["phone"])


def test_check_reports_missing_columns(users_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeConnection(["uuid", "first_name", "created_at", "updated_at"])
    monkeypatch.setattr(main, "get_sync_connection", lambda: connection)

    result = runner.invoke(main.app, ["check", str(users_file)])

    assert result.exit_code == 1
    assert "users: missing deleted_at, phone" in result.output
    assert connection.closed


def test_check_passes_when_schema_matches(users_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    columns = ["uuid", "first_name", "phone", "created_at", "updated_at", "deleted_at"]
    monkeypatch.setattr(main, "get_sync_connection", lambda: _FakeConnection(columns))

    result = runner.invoke(main.app, ["check", str(users_file)])

    assert result.exit_code == 0
    assert "users: ok" in result.stdout
