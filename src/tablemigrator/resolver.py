"""
Foreign key dependency resolution.

Orders a fixed priority list of tables so that every referenced (principal)
table is migrated before the tables that reference it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from sqlalchemy import MetaData

from tablemigrator.exceptions import DependencyCycleError
from tablemigrator.models import MigrationOrder, TableDescriptor

logger = logging.getLogger(__name__)

ForeignKeyLookup = Callable[[str], Sequence[str] | None]
"""Returns the principal table names of a table, or None if the table is unknown."""


class TableDependencyResolver:
    """
    Computes a MigrationOrder from foreign key metadata.

    Tables are visited in priority order. Before a table is placed, all of
    its principals are placed recursively. Each recursion branch carries its
    own copy of the visited path, so a table repeated within one branch marks
    a cycle: the offending edge is dropped and a warning is logged. With
    ``strict=True`` a cycle raises DependencyCycleError instead.

    Tables the lookup does not know about are skipped without error.
    Principals that are not in the priority list but are known to the lookup
    are placed as well.

    Example:
        >>> fks = {"a": [], "b": ["a"], "c": ["b"]}
        >>> resolver = TableDependencyResolver()
        >>> resolver.resolve(["c", "b", "a"], fks.get).names
        ('a', 'b', 'c')
    """

    def __init__(self, strict: bool = False) -> None:
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    def resolve(
        self,
        all_tables: Sequence[str],
        foreign_key_lookup: ForeignKeyLookup,
    ) -> MigrationOrder:
        """
        Resolve the migration order.

        Args:
            all_tables: Fixed priority list of table names.
            foreign_key_lookup: Returns the tables a table references, or
                None when the table is absent from the schema metadata.

        Returns:
            MigrationOrder where every principal precedes its dependents.

        Raises:
            DependencyCycleError: If strict and the foreign keys form a cycle.
        """
        placed: dict[str, TableDescriptor] = {}
        for name in all_tables:
            self._place(name, foreign_key_lookup, placed, ())

        order = MigrationOrder(tuple(placed.values()))
        logger.debug(
            "Resolved migration order of %d tables: %s",
            len(order),
            ", ".join(order.names),
        )
        return order

    def _place(
        self,
        name: str,
        lookup: ForeignKeyLookup,
        placed: dict[str, TableDescriptor],
        branch: tuple[str, ...],
    ) -> None:
        if name in placed:
            return

        if name in branch:
            path = branch[branch.index(name) :] + (name,)
            if self._strict:
                raise DependencyCycleError(path)
            logger.warning(
                "Circular foreign key reference %s, dropping edge %s -> %s",
                " -> ".join(path),
                branch[-1],
                name,
                extra={"cycle": list(path)},
            )
            return

        principals = lookup(name)
        if principals is None:
            logger.debug("Skipping table %s: not present in schema metadata", name)
            return

        branch = branch + (name,)
        for principal in principals:
            # self references never order a table against itself
            if principal == name:
                continue
            self._place(principal, lookup, placed, branch)

        placed[name] = TableDescriptor(
            name=name,
            dependencies=frozenset(p for p in principals if p != name),
        )


def metadata_foreign_key_lookup(metadata: MetaData) -> ForeignKeyLookup:
    """
    Build a foreign key lookup over SQLAlchemy table metadata.

    Principals are reported in column declaration order, so the resulting
    MigrationOrder is stable for a given MetaData.
    """

    def lookup(name: str) -> list[str] | None:
        table = metadata.tables.get(name)
        if table is None:
            return None

        principals: list[str] = []
        for column in table.columns:
            for fk in sorted(column.foreign_keys, key=lambda fk: fk.target_fullname):
                # target_fullname is "[schema.]table.column"
                principal = fk.target_fullname.rsplit(".", 2)[-2]
                if principal not in principals:
                    principals.append(principal)
        return principals

    return lookup


__all__ = [
    "ForeignKeyLookup",
    "TableDependencyResolver",
    "metadata_foreign_key_lookup",
]
