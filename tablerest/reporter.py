from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from tablerest.domain.resource import Resource
from tablerest.handlers import Route


def _column_roles(resource: Resource, name: str) -> str:
    roles = []
    if name == resource.primary_key:
        roles.append("pk (auto)" if resource.auto_increment else "pk")
    if name == resource.created_at_field:
        roles.append("created_at")
    if name == resource.updated_at_field:
        roles.append("updated_at")
    if name == resource.soft_delete_field:
        roles.append("soft_delete")
    for assoc in resource.belongs_to:
        if assoc.field == name:
            roles.append(f"belongs_to {assoc.table}")
    return ", ".join(roles)


def print_resource(resource: Resource, console: Optional[Console] = None) -> None:
    """
    Render a resource's columns, rules and flags as a rich table.
    """
    console = console or Console()
    table = Table(
        title=f"Resource [bold]{resource.table}[/bold]",
        box=box.ROUNDED,
        caption=f"Routes under /{resource.route_name}",
    )
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Role", style="magenta")
    table.add_column("Validator", style="green")
    table.add_column("Searchable", justify="center", style="yellow")
    table.add_column("Immutable", justify="center", style="red")

    for name in resource.field_names:
        column = resource.fields[name]
        table.add_row(
            name,
            _column_roles(resource, name),
            column.validator or "[dim]-[/dim]",
            "yes" if column.searchable else "no",
            "yes" if resource.is_immutable(name) else "no",
        )
    console.print(table)


def print_routes(routes: Iterable[Route], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Routes", box=box.ROUNDED)
    table.add_column("Method", style="cyan", no_wrap=True)
    table.add_column("Path", style="green")
    table.add_column("Resource", style="magenta")
    for route in routes:
        table.add_row(route.method, route.path, route.resource)
    console.print(table)


def print_rows(resource: Resource, rows: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render rows in column order; NULLs are dimmed.
    """
    console = console or Console()

    if not rows:
        console.print("[yellow]No rows matched.[/yellow]")
        return

    table = Table(title=f"{resource.table} ({len(rows)} rows)", box=box.ROUNDED)
    for name in resource.field_names:
        style = "bold cyan" if name == resource.primary_key else None
        table.add_column(name, style=style)
    for row in rows:
        table.add_row(*("[dim]null[/dim]" if row.get(name) is None else str(row[name]) for name in resource.field_names))
    console.print(table)


__all__ = ["print_resource", "print_routes", "print_rows"]
