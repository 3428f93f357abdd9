from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import typer

from tablerest.config import get_settings
from tablerest.domain.resource import Resource
from tablerest.errors import TableRestError
from tablerest.handlers import build_routes
from tablerest.infrastructure.db_factory import get_sync_connection
from tablerest.pipeline import ResourceOperations
from tablerest.reporter import print_resource, print_routes, print_rows
from tablerest.repository.memory import MemoryRepository
from tablerest.repository.postgres import PostgresRepository, missing_columns
from tablerest.utils.logging import configure_logging
from tablerest.validator import RuleValidator

app = typer.Typer(help="tablerest CLI: inspect resource files and query tables through the engine.")


def _load(path: Path) -> Resource:
    try:
        resource = Resource.from_json(path)
        resource.check_rules(RuleValidator())
    except (OSError, ValueError) as exc:
        typer.echo(f"Cannot load resource from {path}: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    return resource


def _operations(path: Path) -> ResourceOperations:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return ResourceOperations(_load(path), PostgresRepository())


def _parse_filters(where: List[str]) -> Dict[str, List[str]]:
    filters: Dict[str, List[str]] = {}
    for item in where:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"expected FIELD=VALUE, got '{item}'", param_hint="--where")
        filters.setdefault(name, []).append(value)
    return filters


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"pool=({settings.db_pool_min_size},{settings.db_pool_max_size}) "
        f"statement_timeout_ms={settings.db_statement_timeout_ms} env={settings.app_env}"
    )


@app.command()
def describe(resource_file: Path = typer.Argument(..., help="Resource JSON file.")) -> None:
    """
    Show the columns, rules and flags of a resource file.
    """
    print_resource(_load(resource_file))


@app.command()
def routes(resource_files: List[Path] = typer.Argument(..., help="Resource JSON files.")) -> None:
    """
    List the routes generated for one or more resource files.
    """
    operations = [ResourceOperations(_load(path), MemoryRepository()) for path in resource_files]
    print_routes(build_routes(operations))


@app.command()
def check(resource_files: List[Path] = typer.Argument(..., help="Resource JSON files.")) -> None:
    """
    Verify that each resource's table and declared columns exist in the database.
    """
    resources = [_load(path) for path in resource_files]
    failed = False
    with get_sync_connection() as conn:
        for resource in resources:
            missing = missing_columns(conn, resource)
            if missing:
                failed = True
                typer.echo(f"{resource.table}: missing {', '.join(missing)}", err=True)
            else:
                typer.echo(f"{resource.table}: ok")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def get(
    resource_file: Path = typer.Argument(..., help="Resource JSON file."),
    key: str = typer.Argument(..., help="Primary key value."),
    as_json: bool = typer.Option(False, "--json", help="Print the row as JSON."),
) -> None:
    """
    Retrieve one row by primary key.
    """
    ops = _operations(resource_file)
    try:
        row = ops.retrieve(key)
    except TableRestError as exc:
        typer.echo(f"{type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if as_json:
        typer.echo(json.dumps(row, indent=2, default=str))
    else:
        print_rows(ops.resource, [row])


@app.command()
def search(
    resource_file: Path = typer.Argument(..., help="Resource JSON file."),
    where: Optional[List[str]] = typer.Option(
        None,
        "--where",
        "-w",
        help="FIELD=VALUE filter; repeat a field to OR its values, different fields are ANDed.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print rows as JSON."),
) -> None:
    """
    Search rows with equality / IN-list filters.
    """
    ops = _operations(resource_file)
    try:
        rows = ops.search(_parse_filters(where or []))
    except TableRestError as exc:
        typer.echo(f"{type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if as_json:
        typer.echo(json.dumps(rows, indent=2, default=str))
    else:
        print_rows(ops.resource, rows)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
