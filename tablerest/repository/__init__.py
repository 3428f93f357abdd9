"""
Repository package for tablerest.

Re-exports the storage contract and the concrete backends so downstream code
can import from `tablerest.repository` directly.
"""

from tablerest.repository.abstract import AbstractRepository, Filters, Repository, Row
from tablerest.repository.memory import MemoryRepository
from tablerest.repository.postgres import PostgresRepository

__all__ = [
    # Abstracts
    "AbstractRepository",
    "Filters",
    "Repository",
    "Row",
    # Backends
    "MemoryRepository",
    "PostgresRepository",
]
