"""
Per-table batch strategies.

The set of migratable tables is closed and known up front. Each table maps
to a TableStrategy that prepares a page of rows for the target engine. The
only transformation applied is sanitization of non-finite floats for engines
that reject them: +Infinity becomes the largest finite double, -Infinity the
smallest, and NaN becomes 0.0.
"""

from __future__ import annotations

import logging
import math
import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Float, MetaData

from tablemigrator.exceptions import UnknownTableError
from tablemigrator.models import DatabaseType, MigrationOrder, Row

logger = logging.getLogger(__name__)


def sanitize_float(value: Any) -> Any:
    """
    Replace a non-finite float with a storable finite value.

    Non-float values pass through unchanged.

    Example:
        >>> sanitize_float(float("nan"))
        0.0
        >>> sanitize_float(1.5)
        1.5
    """
    if not isinstance(value, float) or math.isfinite(value):
        return value
    if math.isnan(value):
        return 0.0
    return sys.float_info.max if value > 0 else -sys.float_info.max


@dataclass(frozen=True)
class TableStrategy:
    """
    How to prepare one table's batches for a target.

    Attributes:
        name: Table name.
        float_columns: Columns holding floating-point values. None means
            every float value in a row is checked.
    """

    name: str
    float_columns: frozenset[str] | None = None

    def prepare(self, rows: Sequence[Row], target_type: DatabaseType) -> list[Row]:
        """
        Prepare a page of rows for writing to target_type.

        Rows are never mutated in place; sanitized rows are copies.
        """
        if not target_type.rejects_non_finite_floats:
            return list(rows)
        return [self._sanitize(row) for row in rows]

    def _sanitize(self, row: Row) -> Row:
        columns = row.keys() if self.float_columns is None else self.float_columns & row.keys()
        changed: Row | None = None
        for column in columns:
            value = row[column]
            clean = sanitize_float(value)
            if clean is not value:
                if changed is None:
                    changed = dict(row)
                changed[column] = clean
        return row if changed is None else changed


class TableRegistry:
    """
    Closed mapping from table name to TableStrategy.

    Example:
        >>> registry = TableRegistry([TableStrategy("users")])
        >>> registry.get("users").name
        'users'
        >>> registry.get("orders")
        Traceback (most recent call last):
        ...
        tablemigrator.exceptions.UnknownTableError: No batch strategy registered for table orders
    """

    def __init__(self, strategies: Iterable[TableStrategy] = ()) -> None:
        self._strategies: dict[str, TableStrategy] = {}
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: TableStrategy) -> None:
        """
        Register a strategy.

        Raises:
            ValueError: If a strategy is already registered for the table.
        """
        if strategy.name in self._strategies:
            raise ValueError(f"Strategy for table {strategy.name} is already registered")
        self._strategies[strategy.name] = strategy

    def get(self, table: str) -> TableStrategy:
        """
        Get the strategy for a table.

        Raises:
            UnknownTableError: If the table is not registered.
        """
        try:
            return self._strategies[table]
        except KeyError:
            raise UnknownTableError(table) from None

    def ensure_covers(self, order: MigrationOrder) -> None:
        """
        Check every table of a migration order has a strategy.

        Raises:
            UnknownTableError: For the first table without one.
        """
        for name in order.names:
            self.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._strategies)

    def __contains__(self, table: object) -> bool:
        return table in self._strategies

    def __iter__(self) -> Iterator[TableStrategy]:
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    @classmethod
    def from_order(cls, order: MigrationOrder) -> TableRegistry:
        """Registry with a default strategy for every table of an order."""
        return cls(TableStrategy(name) for name in order.names)

    @classmethod
    def from_metadata(cls, metadata: MetaData) -> TableRegistry:
        """Registry derived from SQLAlchemy metadata, with float columns from column types."""
        strategies = []
        for table in metadata.tables.values():
            float_columns = frozenset(
                column.name for column in table.columns if isinstance(column.type, Float)
            )
            strategies.append(TableStrategy(table.name, float_columns))
        logger.debug("Registered %d table strategies from metadata", len(strategies))
        return cls(strategies)


__all__ = [
    "sanitize_float",
    "TableStrategy",
    "TableRegistry",
]
