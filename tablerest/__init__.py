"""
tablerest - expose relational tables as REST resources without per-table code.

A declarative `Resource` (columns, primary key, managed timestamp and
soft-delete columns, belongs-to associations, validation rules) drives:

- Safe, parameterized SQL for retrieve, insert, partial/full update, delete,
  search and belongs-to lookups (PostgreSQL via psycopg)
- An in-memory repository with identical semantics for tests
- A per-verb operation pipeline enforcing the resource's rules
- Transport-agnostic handlers and a route table for web-framework adapters
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from tablerest.config import Settings, get_settings
from tablerest.domain.resource import BelongsTo, Column, Resource
from tablerest.errors import (
    ConflictError,
    InfrastructureError,
    NotFoundError,
    TableRestError,
    ValidationError,
)
from tablerest.handlers import Request, Response, Route, build_routes, dispatch
from tablerest.pipeline import ResourceOperations
from tablerest.repository import (
    AbstractRepository,
    MemoryRepository,
    PostgresRepository,
    Repository,
)
from tablerest.utils.logging import configure_logging, get_logger
from tablerest.validator import BlankValidator, RuleValidator, Validator

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Resources
    "BelongsTo",
    "Column",
    "Resource",
    # Errors
    "ConflictError",
    "InfrastructureError",
    "NotFoundError",
    "TableRestError",
    "ValidationError",
    # Pipeline and transport
    "ResourceOperations",
    "Request",
    "Response",
    "Route",
    "build_routes",
    "dispatch",
    # Repositories
    "AbstractRepository",
    "MemoryRepository",
    "PostgresRepository",
    "Repository",
    # Validation
    "BlankValidator",
    "RuleValidator",
    "Validator",
    # Logging
    "configure_logging",
    "get_logger",
]
