"""
In-memory source and target providers.

Useful for testing and development. Rows live in plain dictionaries and are
lost when the process terminates.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from tablemigrator.exceptions import DuplicateKeyError
from tablemigrator.models import DatabaseType, MigrationOrder, Row
from tablemigrator.providers.interface import SourceProvider, TargetProvider
from tablemigrator.resolver import TableDependencyResolver

logger = logging.getLogger(__name__)

KeyColumns = str | Sequence[str]


def _row_key(row: Row, key_columns: KeyColumns) -> Any:
    if isinstance(key_columns, str):
        return row[key_columns]
    return tuple(row[column] for column in key_columns)


class InMemorySourceProvider(SourceProvider):
    """
    In-memory migration source.

    Pages are served in the order rows were given, which is the stable order
    checkpoint offsets refer to.

    Args:
        tables: Rows per table.
        foreign_keys: Principal tables per table. Tables missing here
            reference nothing.
        priority: Fixed priority list for ordering. Defaults to the order
            of ``tables``.
        resolver: Dependency resolver. Defaults to a non-strict resolver.
        database_type: Engine this source pretends to be (default SQLite).
        available: Whether test_connection() succeeds.

    Example:
        >>> source = InMemorySourceProvider(
        ...     {"users": [{"id": 1}], "posts": [{"id": 1, "user_id": 1}]},
        ...     foreign_keys={"posts": ["users"]},
        ... )
        >>> source.get_migration_order().names
        ('users', 'posts')
    """

    def __init__(
        self,
        tables: Mapping[str, Sequence[Row]],
        *,
        foreign_keys: Mapping[str, Sequence[str]] | None = None,
        priority: Sequence[str] | None = None,
        resolver: TableDependencyResolver | None = None,
        database_type: DatabaseType = DatabaseType.SQLITE,
        available: bool = True,
    ) -> None:
        self._tables = {name: [dict(row) for row in rows] for name, rows in tables.items()}
        self._foreign_keys = dict(foreign_keys or {})
        self._priority = tuple(priority) if priority is not None else tuple(tables)
        self._resolver = resolver or TableDependencyResolver()
        self._database_type = database_type
        self._available = available
        self._order: MigrationOrder | None = None
        self.schema_applied = False
        self.closed = False

    @property
    def database_type(self) -> DatabaseType:
        return self._database_type

    async def test_connection(self) -> bool:
        return self._available

    async def apply_schema(self) -> None:
        self.schema_applied = True

    async def get_count(self, table: str) -> int:
        return len(self._tables.get(table, ()))

    async def read_batches_from_offset(
        self,
        table: str,
        batch_size: int,
        start_offset: int,
    ) -> AsyncIterator[list[Row]]:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        rows = self._tables.get(table, [])
        for start in range(max(0, start_offset), len(rows), batch_size):
            yield [dict(row) for row in rows[start : start + batch_size]]
            # yield control like a real driver would
            await asyncio.sleep(0)

    def get_migration_order(self) -> MigrationOrder:
        if self._order is None:
            self._order = self._resolver.resolve(self._priority, self._lookup)
        return self._order

    def _lookup(self, name: str) -> Sequence[str] | None:
        if name not in self._tables:
            return None
        return self._foreign_keys.get(name, ())

    async def close(self) -> None:
        self.closed = True


class InMemoryTargetProvider(TargetProvider):
    """
    In-memory migration target.

    Rows are keyed per table by their key columns; writing an existing key
    through write_batch raises DuplicateKeyError and leaves the table
    unchanged.

    Args:
        database_type: Engine this target pretends to be (default PostgreSQL).
        key_columns: Key column (or columns) per table. Tables missing here
            are keyed by ``id``.
        available: Whether test_connection() succeeds.

    Attributes:
        writes: (table, mode, row count) for every successful write call,
            mode being "strict" or "ignore_duplicates".
        sequences: Next key value per table, set by update_sequences() for
            engines that use sequences.
    """

    def __init__(
        self,
        *,
        database_type: DatabaseType = DatabaseType.POSTGRESQL,
        key_columns: Mapping[str, KeyColumns] | None = None,
        available: bool = True,
    ) -> None:
        self._database_type = database_type
        self._key_columns = dict(key_columns or {})
        self._available = available
        self._tables: dict[str, dict[Any, Row]] = {}
        self._lock = asyncio.Lock()
        self.writes: list[tuple[str, str, int]] = []
        self.sequences: dict[str, int] = {}
        self.schema_applied = False
        self.closed = False

    @property
    def database_type(self) -> DatabaseType:
        return self._database_type

    async def test_connection(self) -> bool:
        return self._available

    async def apply_schema(self) -> None:
        self.schema_applied = True

    async def write_batch(self, table: str, rows: Sequence[Row]) -> None:
        key_columns = self._key_columns.get(table, "id")
        async with self._lock:
            existing = self._tables.setdefault(table, {})
            staged: dict[Any, Row] = {}
            for row in rows:
                key = _row_key(row, key_columns)
                if key in existing or key in staged:
                    raise DuplicateKeyError(table)
                staged[key] = dict(row)
            existing.update(staged)
            self.writes.append((table, "strict", len(rows)))

    async def write_batch_ignore_duplicates(self, table: str, rows: Sequence[Row]) -> None:
        key_columns = self._key_columns.get(table, "id")
        skipped = 0
        async with self._lock:
            existing = self._tables.setdefault(table, {})
            for row in rows:
                key = _row_key(row, key_columns)
                if key in existing:
                    skipped += 1
                    continue
                existing[key] = dict(row)
            self.writes.append((table, "ignore_duplicates", len(rows)))
        if skipped:
            logger.debug("Skipped %d existing rows in %s", skipped, table)

    async def update_sequences(self) -> None:
        if not self._database_type.uses_sequences:
            return
        async with self._lock:
            for table, rows in self._tables.items():
                keys = [key for key in rows if isinstance(key, int)]
                if keys:
                    self.sequences[table] = max(keys) + 1

    async def close(self) -> None:
        self.closed = True

    def rows(self, table: str) -> list[Row]:
        """Get the rows written to a table, in insertion order."""
        return list(self._tables.get(table, {}).values())

    def seed(self, table: str, rows: Sequence[Row]) -> None:
        """Pre-populate a table without recording a write."""
        key_columns = self._key_columns.get(table, "id")
        existing = self._tables.setdefault(table, {})
        for row in rows:
            existing[_row_key(row, key_columns)] = dict(row)


__all__ = [
    "InMemorySourceProvider",
    "InMemoryTargetProvider",
]
