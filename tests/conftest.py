"""Pytest configuration and fixtures."""

import asyncio
import sqlite3
from datetime import datetime, timedelta

import pytest

from dataviewer.core.config import (
    AccessConfig,
    DatabaseSource,
    ExportConfig,
    SecurityConfig,
    Settings,
)
from dataviewer.data.models import ColumnDescriptor, Principal
from dataviewer.data.registry import ConnectionRegistry

BOOKING_COUNT = 2500
BOOKING_STATUSES = ["done", "pending", "cancelled"]
JWT_SECRET = "test-secret-key-with-enough-length-for-hs256"


def booking_row(i: int) -> tuple:
    created = datetime(2024, 1, 1, 0, 30) + timedelta(hours=i)
    return (
        i,
        f"Customer {i % 50}",
        BOOKING_STATUSES[i % 3],
        i % 500,
        created.strftime("%Y-%m-%d %H:%M:%S"),
        None if i % 10 == 0 else f"note {i}",
    )


@pytest.fixture
def bookings_db(tmp_path):
    """Create a SQLite database with the tables used across the suite."""
    path = tmp_path / "bookings.db"
    conn = sqlite3.connect(path)
    conn.execute(
        """
        CREATE TABLE bookings (
            id INTEGER PRIMARY KEY,
            customer TEXT NOT NULL,
            status TEXT NOT NULL,
            amount INTEGER,
            created_at TIMESTAMP,
            notes TEXT
        )
        """
    )
    conn.executemany(
        "INSERT INTO bookings VALUES (?, ?, ?, ?, ?, ?)",
        [booking_row(i) for i in range(1, BOOKING_COUNT + 1)],
    )

    conn.execute("CREATE TABLE messages (id INTEGER PRIMARY KEY, body TEXT, author TEXT)")
    conn.executemany(
        "INSERT INTO messages VALUES (?, ?, ?)",
        [
            (1, "hello, world", "ann"),
            (2, 'she said "hi"', "bob"),
            (3, "line one\nline two", None),
        ],
    )

    conn.execute("CREATE TABLE events (kind TEXT, value INTEGER)")
    conn.executemany(
        "INSERT INTO events VALUES (?, ?)",
        [("click", 3), ("view", 1), ("click", 2), ("view", 5)],
    )

    conn.execute(
        'CREATE TABLE table_grants (user_id TEXT, "database" TEXT, table_name TEXT)'
    )
    conn.execute(
        "INSERT INTO table_grants VALUES (?, ?, ?)", ("cust-2", "Main", "main.messages")
    )

    conn.commit()
    conn.close()
    return str(path)


@pytest.fixture
def db_sources(bookings_db):
    """Logical databases pointing at the test database."""
    return [DatabaseSource(name="Main", url=f"sqlite:///{bookings_db}")]


@pytest.fixture
def with_registry(db_sources):
    """
    Run a coroutine function against a fresh registry.

    Each call gets its own event loop and registry, shut down afterwards.
    """

    def runner(scenario, **registry_kwargs):
        async def main():
            registry = ConnectionRegistry(db_sources, **registry_kwargs)
            try:
                return await scenario(registry)
            finally:
                await registry.shutdown()

        return asyncio.run(main())

    return runner


@pytest.fixture
def test_settings(tmp_path, db_sources):
    """Settings for the test database, without any YAML file."""
    return Settings(
        config_path=str(tmp_path / "missing.yaml"),
        databases=db_sources,
        security=SecurityConfig(jwt_secret_key=JWT_SECRET),
        access=AccessConfig(grants={"cust-1": ["Main:main.bookings"]}),
        export=ExportConfig(),
    )


@pytest.fixture
def admin_principal():
    return Principal(principal_id="admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def internal_principal():
    return Principal(
        principal_id="staff-1", email="staff@example.com", role="internal_user"
    )


@pytest.fixture
def customer_principal():
    return Principal(
        principal_id="cust-1", email="cust@example.com", role="external_customer"
    )


@pytest.fixture
def sample_columns():
    """Column descriptors mirroring the bookings table."""
    return [
        ColumnDescriptor("id", "integer", False, True, 1, int),
        ColumnDescriptor("customer", "text", False, False, 2, str),
        ColumnDescriptor("status", "text", False, False, 3, str),
        ColumnDescriptor("amount", "integer", True, False, 4, int),
        ColumnDescriptor("created_at", "timestamp", True, False, 5, datetime),
        ColumnDescriptor("notes", "text", True, False, 6, str),
    ]
