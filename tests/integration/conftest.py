"""
Shared pytest fixtures for integration tests.

This module provides:
- SQLite database files seeded with the test schema (always available)
- A PostgreSQL container via testcontainers for target tests

If testcontainers or Docker is not available, PostgreSQL tests are
automatically skipped.
"""

from __future__ import annotations

import subprocess
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tests.fixtures.schema import metadata, sample_rows

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()

skip_if_no_postgres_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="PostgreSQL test infrastructure not available",
)


# ============================================================================
# SQLite Fixtures
# ============================================================================


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def source_url(tmp_path: Path) -> str:
    return sqlite_url(tmp_path / "source.db")


@pytest.fixture
def target_url(tmp_path: Path) -> str:
    return sqlite_url(tmp_path / "target.db")


async def seed(engine: AsyncEngine, rows: dict[str, list[dict]]) -> None:
    """Create the test schema and insert rows into it."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        for name, table_rows in rows.items():
            if table_rows:
                await conn.execute(insert(metadata.tables[name]), table_rows)


@pytest_asyncio.fixture
async def seeded_source_url(source_url: str) -> AsyncGenerator[str, None]:
    """SQLite source database holding sample_rows()."""
    engine = create_async_engine(source_url)
    try:
        await seed(engine, sample_rows())
    finally:
        await engine.dispose()
    yield source_url


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide PostgreSQL container for integration tests.

    Container is shared across all tests in the session.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:15")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_url(postgres_container: Any) -> str:
    """Get PostgreSQL connection URL from container."""
    # testcontainers returns psycopg2 URL, convert to asyncpg
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def clean_postgres(postgres_url: str) -> AsyncGenerator[str, None]:
    """Empty PostgreSQL database; the test schema is dropped afterwards."""
    engine = create_async_engine(postgres_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)
        yield postgres_url
        async with engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)
    finally:
        await engine.dispose()
