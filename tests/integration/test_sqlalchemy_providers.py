"""
Integration tests for the SQLAlchemy providers.

Tests cover:
- Paged reads ordered by primary key, from any offset
- Strict and duplicate-tolerant writes against real constraints
- Dependency order from table metadata
- Full and resumed orchestrator runs between database files
- PostgreSQL duplicate detection and sequence resynchronization

SQLite tests run everywhere. PostgreSQL tests need Docker and testcontainers.
"""

from __future__ import annotations

import math
import sys
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import create_async_engine

from tablemigrator.checkpoint import CheckpointStore
from tablemigrator.config import ConnectionSettings, MigrationSettings
from tablemigrator.exceptions import DuplicateKeyError, UnknownTableError
from tablemigrator.interaction import NonInteractiveOperator
from tablemigrator.models import DatabaseType, MigrationPhase
from tablemigrator.orchestrator import MigrationOrchestrator
from tablemigrator.providers import (
    SqlAlchemyProviderFactory,
    SqlAlchemySourceProvider,
    SqlAlchemyTargetProvider,
)
from tablemigrator.strategies import TableRegistry
from tablemigrator.watchdog import WatchdogMonitor
from tests.fixtures import StaticProviderFactory
from tests.fixtures.schema import DEPENDENCY_ORDER, metadata, players, sample_rows
from tests.integration.conftest import seed, skip_if_no_postgres_infra

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def source(seeded_source_url: str) -> AsyncGenerator[SqlAlchemySourceProvider, None]:
    provider = SqlAlchemySourceProvider.from_url(
        seeded_source_url, metadata, DatabaseType.SQLITE, enable_tracing=False
    )
    async with provider:
        yield provider


@pytest_asyncio.fixture
async def sqlite_target(target_url: str) -> AsyncGenerator[SqlAlchemyTargetProvider, None]:
    """SQLite file standing in for a MySQL target, with the schema applied."""
    provider = SqlAlchemyTargetProvider.from_url(
        target_url, metadata, DatabaseType.MYSQL, enable_tracing=False
    )
    async with provider:
        await provider.apply_schema()
        yield provider


async def read_all(url: str, table: str) -> list[dict]:
    reader = SqlAlchemySourceProvider.from_url(
        url, metadata, DatabaseType.SQLITE, enable_tracing=False
    )
    async with reader:
        rows: list[dict] = []
        async for page in reader.read_batches(table, 100):
            rows.extend(page)
        return rows


def build_orchestrator(
    source,
    target,
    connection: ConnectionSettings,
    settings: MigrationSettings,
    watchdog: WatchdogMonitor,
    factory=None,
) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        operator=NonInteractiveOperator(connection),
        provider_factory=factory or StaticProviderFactory(source, target),
        checkpoint_store=CheckpointStore(settings.state_path, enable_tracing=False),
        watchdog=watchdog,
        settings=settings,
        table_registry=TableRegistry.from_metadata(metadata),
        enable_tracing=False,
    )


class TestSqlAlchemySourceProvider:
    """Tests for reading from a SQLite source."""

    @pytest.mark.asyncio
    async def test_connection_probe(self, source: SqlAlchemySourceProvider) -> None:
        """Test the probe succeeds against an existing database."""
        assert await source.test_connection() is True

    @pytest.mark.asyncio
    async def test_connection_probe_failure(self, tmp_path) -> None:
        """Test the probe reports False when the database cannot be opened."""
        provider = SqlAlchemySourceProvider.from_url(
            f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'source.db'}",
            metadata,
            DatabaseType.SQLITE,
            enable_tracing=False,
        )
        async with provider:
            assert await provider.test_connection() is False

    @pytest.mark.asyncio
    async def test_get_count(self, source: SqlAlchemySourceProvider) -> None:
        """Test row counts per table."""
        assert await source.get_count("players") == 7
        assert await source.get_count("matches") == 10
        assert await source.get_count("penalties") == 3

    @pytest.mark.asyncio
    async def test_pages_follow_primary_key(self, source: SqlAlchemySourceProvider) -> None:
        """Test pages have batch size and come in key order."""
        pages = [page async for page in source.read_batches("matches", 4)]

        assert [len(page) for page in pages] == [4, 4, 2]
        assert [row["id"] for page in pages for row in page] == list(range(1, 11))
        assert pages[0][0] == sample_rows()["matches"][0]

    @pytest.mark.asyncio
    async def test_read_from_offset(self, source: SqlAlchemySourceProvider) -> None:
        """Test reading skips the first start_offset rows."""
        pages = [page async for page in source.read_batches_from_offset("matches", 4, 6)]
        assert [row["id"] for page in pages for row in page] == [7, 8, 9, 10]

    @pytest.mark.asyncio
    async def test_offset_past_end(self, source: SqlAlchemySourceProvider) -> None:
        """Test an offset at the end yields nothing."""
        pages = [page async for page in source.read_batches_from_offset("matches", 4, 10)]
        assert pages == []

    @pytest.mark.asyncio
    async def test_unknown_table(self, source: SqlAlchemySourceProvider) -> None:
        """Test a table outside the metadata is rejected."""
        with pytest.raises(UnknownTableError):
            await source.get_count("ghosts")

    @pytest.mark.asyncio
    async def test_migration_order(self, source: SqlAlchemySourceProvider) -> None:
        """Test metadata foreign keys order principals first."""
        assert source.get_migration_order().names == DEPENDENCY_ORDER


class TestSqlAlchemyTargetProvider:
    """Tests for writing to a SQLite target."""

    @pytest.mark.asyncio
    async def test_write_batch(
        self, sqlite_target: SqlAlchemyTargetProvider, target_url: str
    ) -> None:
        """Test a strict write stores every row."""
        rows = sample_rows()["players"]
        await sqlite_target.write_batch("players", rows)
        assert await read_all(target_url, "players") == rows

    @pytest.mark.asyncio
    async def test_duplicate_rolls_back_whole_batch(
        self, sqlite_target: SqlAlchemyTargetProvider, target_url: str
    ) -> None:
        """Test a duplicate key raises DuplicateKeyError and writes nothing of the batch."""
        rows = sample_rows()["players"]
        await sqlite_target.write_batch("players", rows[:3])

        with pytest.raises(DuplicateKeyError) as exc_info:
            await sqlite_target.write_batch("players", [rows[3], rows[0]])

        assert exc_info.value.table == "players"
        assert [row["id"] for row in await read_all(target_url, "players")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_ignore_duplicates(
        self, sqlite_target: SqlAlchemyTargetProvider, target_url: str
    ) -> None:
        """Test the tolerant path skips existing rows and writes the rest."""
        rows = sample_rows()["players"]
        await sqlite_target.write_batch("players", rows[:3])
        await sqlite_target.write_batch_ignore_duplicates("players", rows[1:5])

        assert await read_all(target_url, "players") == rows[:5]

    @pytest.mark.asyncio
    async def test_empty_batch(self, sqlite_target: SqlAlchemyTargetProvider) -> None:
        """Test writing no rows is a no-op."""
        await sqlite_target.write_batch("players", [])
        await sqlite_target.write_batch_ignore_duplicates("players", [])

    @pytest.mark.asyncio
    async def test_update_sequences_without_sequences(
        self, sqlite_target: SqlAlchemyTargetProvider
    ) -> None:
        """Test resynchronizing sequences does nothing on engines without them."""
        await sqlite_target.write_batch("players", sample_rows()["players"])
        await sqlite_target.update_sequences()


class TestSqlAlchemyProviderFactory:
    """Tests for building providers from connection settings."""

    @pytest.mark.asyncio
    async def test_creates_providers(self, source_url: str, target_url: str) -> None:
        """Test the factory passes URLs and engine types through."""
        factory = SqlAlchemyProviderFactory(metadata, ["players"], enable_tracing=False)
        connection = ConnectionSettings(
            source_type=DatabaseType.SQLITE,
            source_url=source_url,
            target_type=DatabaseType.MYSQL,
            target_url=target_url,
        )

        async with factory.create_source(connection) as source:
            assert isinstance(source, SqlAlchemySourceProvider)
            assert source.database_type == DatabaseType.SQLITE
            assert source.get_migration_order().names == ("players",)
        async with factory.create_target(connection) as target:
            assert isinstance(target, SqlAlchemyTargetProvider)
            assert target.database_type == DatabaseType.MYSQL


class TestMigrationBetweenFiles:
    """End-to-end orchestrator runs between SQLite files."""

    @pytest.mark.asyncio
    async def test_full_run(
        self,
        source: SqlAlchemySourceProvider,
        target_url: str,
        connection: ConnectionSettings,
        settings: MigrationSettings,
        watchdog: WatchdogMonitor,
    ) -> None:
        """Test every table arrives complete and the checkpoint is removed."""
        target = SqlAlchemyTargetProvider.from_url(
            target_url, metadata, DatabaseType.MYSQL, enable_tracing=False
        )

        result = await build_orchestrator(source, target, connection, settings, watchdog).run()

        assert result.success is True
        assert result.rows_migrated == 20
        for name, rows in sample_rows().items():
            assert await read_all(target_url, name) == rows
        assert not settings.state_path.exists()

    @pytest.mark.asyncio
    async def test_non_finite_floats_are_sanitized(
        self,
        source_url: str,
        target_url: str,
        connection: ConnectionSettings,
        settings: MigrationSettings,
        watchdog: WatchdogMonitor,
    ) -> None:
        """Test infinite values stored in SQLite arrive as finite extremes."""
        engine = create_async_engine(source_url)
        try:
            await seed(
                engine,
                {
                    "players": [{"id": 1, "name": "p"}],
                    "matches": [
                        {"id": 1, "player_id": 1, "kdr": math.inf},
                        {"id": 2, "player_id": 1, "kdr": -math.inf},
                        {"id": 3, "player_id": 1, "kdr": 1.25},
                    ],
                },
            )
        finally:
            await engine.dispose()

        source = SqlAlchemySourceProvider.from_url(
            source_url, metadata, DatabaseType.SQLITE, enable_tracing=False
        )
        target = SqlAlchemyTargetProvider.from_url(
            target_url, metadata, DatabaseType.MYSQL, enable_tracing=False
        )
        result = await build_orchestrator(source, target, connection, settings, watchdog).run()

        assert result.success is True
        assert [row["kdr"] for row in await read_all(target_url, "matches")] == [
            sys.float_info.max,
            -sys.float_info.max,
            1.25,
        ]

    @pytest.mark.asyncio
    async def test_resume_after_interruption(
        self,
        source: SqlAlchemySourceProvider,
        sqlite_target: SqlAlchemyTargetProvider,
        target_url: str,
        connection: ConnectionSettings,
        settings: MigrationSettings,
        watchdog: WatchdogMonitor,
    ) -> None:
        """Test a resumed run tolerates rows written after the last checkpoint."""
        rows = sample_rows()
        await sqlite_target.write_batch("players", rows["players"])
        await sqlite_target.write_batch("matches", rows["matches"][:6])

        previous = CheckpointStore(settings.state_path, enable_tracing=False)
        await previous.create_session(DatabaseType.SQLITE, DatabaseType.MYSQL)
        await previous.update_progress("players", 7)
        await previous.mark_table_complete("players")
        await previous.update_progress("matches", 4)

        target = SqlAlchemyTargetProvider.from_url(
            target_url, metadata, DatabaseType.MYSQL, enable_tracing=False
        )
        result = await build_orchestrator(source, target, connection, settings, watchdog).run()

        assert result.success is True
        assert result.resumed is True
        assert result.rows_migrated == 9
        for name, table_rows in rows.items():
            assert await read_all(target_url, name) == table_rows

    @pytest.mark.asyncio
    async def test_non_empty_target_fails(
        self,
        source: SqlAlchemySourceProvider,
        sqlite_target: SqlAlchemyTargetProvider,
        target_url: str,
        connection: ConnectionSettings,
        settings: MigrationSettings,
        watchdog: WatchdogMonitor,
    ) -> None:
        """Test a fresh run into a populated target stops at the first duplicate."""
        await sqlite_target.write_batch("players", sample_rows()["players"][:1])

        target = SqlAlchemyTargetProvider.from_url(
            target_url, metadata, DatabaseType.MYSQL, enable_tracing=False
        )
        result = await build_orchestrator(source, target, connection, settings, watchdog).run()

        assert result.phase == MigrationPhase.ERROR
        assert "Data already exists in target table players" in result.error_message
        assert settings.state_path.exists()


@pytest.mark.postgres
@skip_if_no_postgres_infra
class TestPostgreSQLTarget:
    """Tests against a PostgreSQL target."""

    @pytest_asyncio.fixture
    async def pg_target(self, clean_postgres: str) -> AsyncGenerator[SqlAlchemyTargetProvider, None]:
        provider = SqlAlchemyTargetProvider.from_url(
            clean_postgres, metadata, DatabaseType.POSTGRESQL, enable_tracing=False
        )
        async with provider:
            await provider.apply_schema()
            yield provider

    @pytest.mark.asyncio
    async def test_duplicate_key_detected(self, pg_target: SqlAlchemyTargetProvider) -> None:
        """Test unique violations surface as DuplicateKeyError."""
        rows = sample_rows()["players"]
        await pg_target.write_batch("players", rows[:2])
        with pytest.raises(DuplicateKeyError):
            await pg_target.write_batch("players", rows[1:3])

    @pytest.mark.asyncio
    async def test_ignore_duplicates(self, pg_target: SqlAlchemyTargetProvider) -> None:
        """Test the tolerant path skips existing rows."""
        rows = sample_rows()["players"]
        await pg_target.write_batch("players", rows[:2])
        await pg_target.write_batch_ignore_duplicates("players", rows)

        async with pg_target.engine.connect() as conn:
            result = await conn.execute(select(players.c.id).order_by(players.c.id))
            assert list(result.scalars()) == list(range(1, 8))

    @pytest.mark.asyncio
    async def test_update_sequences(self, pg_target: SqlAlchemyTargetProvider) -> None:
        """Test new keys continue after the highest migrated key."""
        await pg_target.write_batch("players", sample_rows()["players"])
        await pg_target.update_sequences()

        async with pg_target.engine.begin() as conn:
            result = await conn.execute(
                insert(players).values(name="newcomer").returning(players.c.id)
            )
            assert result.scalar_one() == 8

    @pytest.mark.asyncio
    async def test_full_run_through_factory(
        self,
        seeded_source_url: str,
        clean_postgres: str,
        settings: MigrationSettings,
        watchdog: WatchdogMonitor,
    ) -> None:
        """Test a SQLite to PostgreSQL run built from connection settings."""
        connection = ConnectionSettings(
            source_type=DatabaseType.SQLITE,
            source_url=seeded_source_url,
            target_type=DatabaseType.POSTGRESQL,
            target_url=clean_postgres,
        )
        factory = SqlAlchemyProviderFactory(metadata, enable_tracing=False)

        result = await build_orchestrator(
            None, None, connection, settings, watchdog, factory=factory
        ).run()

        assert result.success is True
        assert result.rows_migrated == 20
