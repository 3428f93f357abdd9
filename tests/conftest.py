"""
Pytest configuration for tablerest.

Provides fixtures for:
- Sample resources (users, rent events, auto-increment counters)
- In-memory repositories and operation pipelines with a fixed clock
- Database connection management and table setup for integration tests
"""

from __future__ import annotations

import copy
import os
from datetime import datetime, timezone
from typing import Generator

import psycopg
import pytest

from tablerest.config import Settings
from tablerest.domain.resource import Resource
from tablerest.pipeline import ResourceOperations
from tablerest.repository.memory import MemoryRepository

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

USERS_DEFINITION = {
    "table": "users",
    "primary_key": "uuid",
    "fields": {
        "uuid": {"validator": "uuid4"},
        "first_name": {"validator": "required,min=4"},
        "phone": {},
        "created_at": {},
        "updated_at": {},
        "deleted_at": {},
    },
    "created_at_field": "created_at",
    "updated_at_field": "updated_at",
    "soft_delete_field": "deleted_at",
}

RENT_EVENTS_DEFINITION = {
    "table": "rent_events",
    "primary_key": "uuid",
    "fields": {
        "uuid": {"validator": "uuid4"},
        "user_id": {"validator": "required,uuid4"},
        "hours": {"validator": "omitempty,gte=0"},
        "notes": {"searchable": False},
        "starting_time": {"immutable": True},
        "created_at": {},
        "deleted_at": {},
    },
    "created_at_field": "created_at",
    "soft_delete_field": "deleted_at",
    "belongs_to_fields": [{"table": "users", "field": "user_id"}],
}

COUNTERS_DEFINITION = {
    "table": "counters",
    "primary_key": "id",
    "incremental_pk": True,
    "fields": {
        "id": {"validator": "number"},
        "label": {"validator": "required"},
    },
}


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
def users_definition() -> dict:
    return copy.deepcopy(USERS_DEFINITION)


@pytest.fixture
def rent_events_definition() -> dict:
    return copy.deepcopy(RENT_EVENTS_DEFINITION)


@pytest.fixture
def users_resource() -> Resource:
    return Resource.model_validate(USERS_DEFINITION)


@pytest.fixture
def rent_events_resource() -> Resource:
    return Resource.model_validate(RENT_EVENTS_DEFINITION)


@pytest.fixture
def counters_resource() -> Resource:
    return Resource.model_validate(COUNTERS_DEFINITION)


@pytest.fixture
def memory_repository() -> MemoryRepository:
    return MemoryRepository(clock=fixed_clock)


@pytest.fixture
def users(users_resource: Resource, memory_repository: MemoryRepository) -> ResourceOperations:
    """Operation pipeline for users over the shared in-memory repository."""
    return ResourceOperations(users_resource, memory_repository, clock=fixed_clock)


@pytest.fixture
def rent_events(rent_events_resource: Resource, memory_repository: MemoryRepository) -> ResourceOperations:
    return ResourceOperations(rent_events_resource, memory_repository, clock=fixed_clock)


@pytest.fixture
def counters(counters_resource: Resource, memory_repository: MemoryRepository) -> ResourceOperations:
    return ResourceOperations(counters_resource, memory_repository, clock=fixed_clock)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "tablerest"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Create the sample tables used by the integration tests.
    """
    with db_connection.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS users (
                uuid TEXT PRIMARY KEY,
                first_name TEXT NOT NULL,
                phone TEXT,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ,
                deleted_at TIMESTAMPTZ
            );
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS rent_events (
                uuid UUID PRIMARY KEY,
                user_id TEXT NOT NULL,
                hours INTEGER,
                notes TEXT,
                starting_time TIMESTAMP,
                created_at TIMESTAMPTZ,
                deleted_at TIMESTAMPTZ
            );
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                id BIGSERIAL PRIMARY KEY,
                label TEXT NOT NULL
            );
        """)
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the sample tables before and after each test function.
    """
    statement = "TRUNCATE TABLE users, rent_events, counters RESTART IDENTITY CASCADE;"
    with db_connection.cursor() as cur:
        cur.execute(statement)
    yield
    with db_connection.cursor() as cur:
        cur.execute(statement)
