"""
SQLAlchemy async engine providers.

Tables are described by a SQLAlchemy MetaData, which also supplies the
foreign keys for dependency ordering. Pages are read ordered by primary key
with OFFSET/LIMIT and written with one executemany INSERT per page inside a
single transaction.

Supported drivers are whatever SQLAlchemy's async extension supports for the
engines in DatabaseType, e.g. ``sqlite+aiosqlite``, ``mysql+aiomysql`` and
``postgresql+asyncpg``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from sqlalchemy import Integer, MetaData, Table, func, insert, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tablemigrator.exceptions import DuplicateKeyError, UnknownTableError
from tablemigrator.models import DatabaseType, MigrationOrder, Row
from tablemigrator.observability import (
    ATTR_BATCH_SIZE,
    ATTR_OFFSET,
    ATTR_TABLE,
    ATTR_WRITE_MODE,
    Tracer,
    create_tracer,
)
from tablemigrator.providers.interface import SourceProvider, TargetProvider
from tablemigrator.resolver import TableDependencyResolver, metadata_foreign_key_lookup

logger = logging.getLogger(__name__)

POSTGRES_UNIQUE_VIOLATION = "23505"
MYSQL_DUPLICATE_ENTRY = 1062


def is_duplicate_key_error(error: IntegrityError) -> bool:
    """
    Check if an IntegrityError is a unique/primary key violation.

    Recognizes PostgreSQL SQLSTATE 23505, MySQL error 1062 and SQLite's
    UNIQUE constraint messages.
    """
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == POSTGRES_UNIQUE_VIOLATION:
        return True

    args = getattr(orig, "args", ())
    if args and args[0] == MYSQL_DUPLICATE_ENTRY:
        return True

    message = str(orig).lower()
    return "unique constraint failed" in message or "duplicate" in message


class _SqlAlchemyProvider:
    """Shared engine handling for SQLAlchemy providers."""

    def __init__(
        self,
        engine: AsyncEngine,
        metadata: MetaData,
        database_type: DatabaseType,
        *,
        owns_engine: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._engine = engine
        self._metadata = metadata
        self._database_type = database_type
        self._owns_engine = owns_engine
        self._closed = False
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def database_type(self) -> DatabaseType:
        return self._database_type

    async def test_connection(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Connection probe to %s failed: %s",
                self._database_type.value,
                e,
                extra={"database_type": self._database_type.value},
            )
            return False

    async def apply_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)
        logger.info(
            "Applied schema of %d tables to %s",
            len(self._metadata.tables),
            self._database_type.value,
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_engine:
            await self._engine.dispose()

    def _table(self, name: str) -> Table:
        table = self._metadata.tables.get(name)
        if table is None:
            raise UnknownTableError(name)
        return table


class SqlAlchemySourceProvider(_SqlAlchemyProvider, SourceProvider):
    """
    Reads pages of rows through a SQLAlchemy AsyncEngine.

    Args:
        engine: Async engine connected to the source.
        metadata: Table definitions of the migratable tables.
        database_type: Engine of the source.
        priority: Fixed priority list for ordering. Defaults to the order
            tables were defined in metadata.
        resolver: Dependency resolver. Defaults to a non-strict resolver.
        owns_engine: Dispose the engine on close() (default True).
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).

    Example:
        >>> source = SqlAlchemySourceProvider.from_url(
        ...     "sqlite+aiosqlite:///Database.db", metadata, DatabaseType.SQLITE
        ... )
        >>> async with source:
        ...     async for page in source.read_batches("users", 25000):
        ...         ...
    """

    def __init__(
        self,
        engine: AsyncEngine,
        metadata: MetaData,
        database_type: DatabaseType,
        *,
        priority: Sequence[str] | None = None,
        resolver: TableDependencyResolver | None = None,
        owns_engine: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        super().__init__(
            engine,
            metadata,
            database_type,
            owns_engine=owns_engine,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self._priority = tuple(priority) if priority is not None else tuple(metadata.tables)
        self._resolver = resolver or TableDependencyResolver()
        self._order: MigrationOrder | None = None

    @classmethod
    def from_url(
        cls,
        url: str,
        metadata: MetaData,
        database_type: DatabaseType,
        **kwargs: Any,
    ) -> SqlAlchemySourceProvider:
        """Create a provider owning a new engine for url."""
        return cls(create_async_engine(url), metadata, database_type, **kwargs)

    async def get_count(self, table: str) -> int:
        stmt = select(func.count()).select_from(self._table(table))
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return int(result.scalar_one())

    async def read_batches_from_offset(
        self,
        table: str,
        batch_size: int,
        start_offset: int,
    ) -> AsyncIterator[list[Row]]:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        source_table = self._table(table)
        # tables without a primary key fall back to ordering by every column
        order_by = list(source_table.primary_key.columns) or list(source_table.columns)

        offset = max(0, start_offset)
        while True:
            stmt = select(source_table).order_by(*order_by).offset(offset).limit(batch_size)
            with self._tracer.span(
                "tablemigrator.source.read_batch",
                {ATTR_TABLE: table, ATTR_OFFSET: offset, ATTR_BATCH_SIZE: batch_size},
            ):
                async with self._engine.connect() as conn:
                    result = await conn.execute(stmt)
                    rows = [dict(row._mapping) for row in result]

            if not rows:
                return
            yield rows
            offset += len(rows)
            if len(rows) < batch_size:
                return

    def get_migration_order(self) -> MigrationOrder:
        if self._order is None:
            self._order = self._resolver.resolve(
                self._priority,
                metadata_foreign_key_lookup(self._metadata),
            )
        return self._order


class SqlAlchemyTargetProvider(_SqlAlchemyProvider, TargetProvider):
    """
    Writes pages of rows through a SQLAlchemy AsyncEngine.

    Args:
        engine: Async engine connected to the target.
        metadata: Table definitions of the migratable tables.
        database_type: Engine of the target.
        owns_engine: Dispose the engine on close() (default True).
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    @classmethod
    def from_url(
        cls,
        url: str,
        metadata: MetaData,
        database_type: DatabaseType,
        **kwargs: Any,
    ) -> SqlAlchemyTargetProvider:
        """Create a provider owning a new engine for url."""
        return cls(create_async_engine(url), metadata, database_type, **kwargs)

    async def write_batch(self, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        target_table = self._table(table)

        with self._tracer.span(
            "tablemigrator.target.write_batch",
            {ATTR_TABLE: table, ATTR_BATCH_SIZE: len(rows), ATTR_WRITE_MODE: "strict"},
        ):
            try:
                async with self._engine.begin() as conn:
                    await conn.execute(insert(target_table), [dict(row) for row in rows])
            except IntegrityError as e:
                if is_duplicate_key_error(e):
                    raise DuplicateKeyError(table) from e
                raise

    async def write_batch_ignore_duplicates(self, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        target_table = self._table(table)
        stmt = insert(target_table)
        skipped = 0

        with self._tracer.span(
            "tablemigrator.target.write_batch",
            {
                ATTR_TABLE: table,
                ATTR_BATCH_SIZE: len(rows),
                ATTR_WRITE_MODE: "ignore_duplicates",
            },
        ):
            for row in rows:
                try:
                    async with self._engine.begin() as conn:
                        await conn.execute(stmt, dict(row))
                except IntegrityError as e:
                    if not is_duplicate_key_error(e):
                        raise
                    skipped += 1

        if skipped:
            logger.info(
                "Skipped %d rows already present in %s",
                skipped,
                table,
                extra={"table": table, "skipped": skipped},
            )

    async def update_sequences(self) -> None:
        """
        Move each serial sequence past the highest migrated key.

        Applies to PostgreSQL tables with a single integer primary key;
        other engines track their key counters themselves.
        """
        if self._engine.dialect.name != "postgresql":
            return

        preparer = self._engine.dialect.identifier_preparer
        updated = 0
        async with self._engine.begin() as conn:
            for table in self._metadata.tables.values():
                key_columns = list(table.primary_key.columns)
                if len(key_columns) != 1 or not isinstance(key_columns[0].type, Integer):
                    continue
                column = key_columns[0]
                quoted_table = preparer.format_table(table)
                quoted_column = preparer.quote(column.name)
                await conn.execute(
                    text(
                        f"SELECT setval(pg_get_serial_sequence(:table_name, :column_name), "
                        f"COALESCE(MAX({quoted_column}), 0) + 1, false) "
                        f"FROM {quoted_table}"
                    ),
                    {"table_name": quoted_table, "column_name": column.name},
                )
                updated += 1

        logger.info("Updated sequences of %d tables", updated)


__all__ = [
    "POSTGRES_UNIQUE_VIOLATION",
    "MYSQL_DUPLICATE_ENTRY",
    "is_duplicate_key_error",
    "SqlAlchemySourceProvider",
    "SqlAlchemyTargetProvider",
]
