"""
Source and target database provider interfaces.

A migration reads pages of rows from a SourceProvider and writes them to a
TargetProvider. Providers own their connections and are closed by the
orchestrator on every exit path; both support ``async with``.

This module provides:
- SourceProvider: Abstract base class for databases rows are read from
- TargetProvider: Abstract base class for databases rows are written to
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from types import TracebackType
from typing import Self

from tablemigrator.models import DatabaseType, MigrationOrder, Row


class SourceProvider(ABC):
    """
    Abstract base class for migration sources.

    Pages must be read in a stable order (by primary key) so that a row
    offset recorded in a checkpoint addresses the same rows after a restart.
    """

    @property
    @abstractmethod
    def database_type(self) -> DatabaseType:
        """Engine of this source."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Probe the database.

        Returns:
            True if the database answered, False otherwise. Never raises for
            connection failures.
        """
        pass

    @abstractmethod
    async def apply_schema(self) -> None:
        """Bring the source schema up to date before reading."""
        pass

    @abstractmethod
    async def get_count(self, table: str) -> int:
        """Get the number of rows in a table."""
        pass

    def read_batches(self, table: str, batch_size: int) -> AsyncIterator[list[Row]]:
        """
        Read a whole table in pages of at most batch_size rows.

        Args:
            table: Table to read.
            batch_size: Maximum rows per page.

        Yields:
            Non-empty pages of rows in stable order.
        """
        return self.read_batches_from_offset(table, batch_size, 0)

    @abstractmethod
    def read_batches_from_offset(
        self,
        table: str,
        batch_size: int,
        start_offset: int,
    ) -> AsyncIterator[list[Row]]:
        """
        Read a table in pages, skipping the first start_offset rows.

        Args:
            table: Table to read.
            batch_size: Maximum rows per page.
            start_offset: Rows to skip in the stable order.

        Yields:
            Non-empty pages of rows in stable order.
        """
        pass

    @abstractmethod
    def get_migration_order(self) -> MigrationOrder:
        """
        Get the dependency-safe order of tables to migrate.

        Computed once and cached for the lifetime of the provider.
        """
        pass

    async def close(self) -> None:
        """Release connections. Safe to call more than once."""
        return None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


class TargetProvider(ABC):
    """
    Abstract base class for migration targets.

    Each write_batch call is one transaction: either every row of the page
    is written or none is.
    """

    @property
    @abstractmethod
    def database_type(self) -> DatabaseType:
        """Engine of this target."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Probe the database.

        Returns:
            True if the database answered, False otherwise.
        """
        pass

    @abstractmethod
    async def apply_schema(self) -> None:
        """Create the target schema."""
        pass

    @abstractmethod
    async def write_batch(self, table: str, rows: Sequence[Row]) -> None:
        """
        Write a page of rows in one transaction.

        Raises:
            DuplicateKeyError: If any row already exists in the target.
        """
        pass

    @abstractmethod
    async def write_batch_ignore_duplicates(self, table: str, rows: Sequence[Row]) -> None:
        """
        Write a page of rows one at a time, skipping rows that already exist.

        Used for the first page after a resume, which may overlap rows that
        were written before the checkpoint recorded them.
        """
        pass

    async def update_sequences(self) -> None:
        """
        Resynchronize key generators after the bulk load.

        A no-op for engines without out-of-band sequences.
        """
        return None

    async def close(self) -> None:
        """Release connections. Safe to call more than once."""
        return None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


__all__ = [
    "SourceProvider",
    "TargetProvider",
]
