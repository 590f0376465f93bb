"""
Core data models for table migration.

This module defines the value types shared by the resolver, checkpoint
store, providers and orchestrator:

- DatabaseType: Supported storage engines and their capabilities
- TableDescriptor: Identity of one migratable table and its dependencies
- MigrationOrder: Dependency-safe processing order, immutable per run
- MigrationPhase: Orchestrator state machine
- ResumeSummary: What the operator sees before confirming a resume
- MigrationResult: Outcome of one orchestrator run
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tablemigrator.checkpoint import CheckpointState

Row = dict[str, Any]
"""One table row keyed by column name."""


class DatabaseType(str, Enum):
    """
    Storage engines the migrator knows how to talk to.

    Values:
        SQLITE: File-based SQLite database (source only).
        MYSQL: MySQL / MariaDB (source and target).
        POSTGRESQL: PostgreSQL (target only).
    """

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    @property
    def can_be_source(self) -> bool:
        """Check if this engine is supported as a migration source."""
        return self in (DatabaseType.SQLITE, DatabaseType.MYSQL)

    @property
    def can_be_target(self) -> bool:
        """Check if this engine is supported as a migration target."""
        return self in (DatabaseType.POSTGRESQL, DatabaseType.MYSQL)

    @property
    def rejects_non_finite_floats(self) -> bool:
        """
        Check if the engine rejects Infinity and NaN in floating-point columns.

        MySQL/MariaDB cannot store them, while SQLite sources happily hold them.
        """
        return self == DatabaseType.MYSQL

    @property
    def uses_sequences(self) -> bool:
        """
        Check if key generation is tracked by out-of-band sequence objects.

        Such engines need their sequences resynchronized after a bulk load
        that inserted explicit key values.
        """
        return self == DatabaseType.POSTGRESQL


@dataclass(frozen=True)
class TableDescriptor:
    """
    Identity of one migratable table.

    Attributes:
        name: Table name, unique within a migration.
        dependencies: Names of the principal tables this table references
            through foreign keys.
    """

    name: str
    dependencies: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class MigrationOrder:
    """
    Ordered sequence of tables such that every principal precedes its dependents.

    Computed once per run by the TableDependencyResolver and never mutated.

    Example:
        >>> order = MigrationOrder((TableDescriptor("a"), TableDescriptor("b")))
        >>> order.names
        ('a', 'b')
        >>> "b" in order
        True
    """

    tables: tuple[TableDescriptor, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        """Table names in migration order."""
        return tuple(table.name for table in self.tables)

    def index_of(self, name: str) -> int:
        """
        Get the position of a table in the order.

        Raises:
            ValueError: If the table is not part of the order.
        """
        return self.names.index(name)

    def get(self, name: str) -> TableDescriptor | None:
        """Get the descriptor for a table name, or None."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def __iter__(self) -> Iterator[TableDescriptor]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, TableDescriptor):
            return item in self.tables
        return item in self.names


class MigrationPhase(Enum):
    """
    Orchestrator lifecycle phases.

    State machine transitions:
        INIT -> RESUME_CHECK -> CONFIGURE -> APPLY_SCHEMA -> SESSION_READY
             -> MIGRATE_TABLES -> FINALIZE -> DONE
        APPLY_SCHEMA is skipped when resuming a previous session.
        Any phase --> ERROR (unrecoverable failure)
        Any phase --> CANCELLED (cooperative cancel or operator declined)
    """

    INIT = "init"
    RESUME_CHECK = "resume_check"
    CONFIGURE = "configure"
    APPLY_SCHEMA = "apply_schema"
    SESSION_READY = "session_ready"
    MIGRATE_TABLES = "migrate_tables"
    FINALIZE = "finalize"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal (absorbing) phase.

        Returns:
            True for DONE, ERROR and CANCELLED.
        """
        return self in (MigrationPhase.DONE, MigrationPhase.ERROR, MigrationPhase.CANCELLED)


@dataclass(frozen=True)
class ResumeSummary:
    """
    Summary of a loaded checkpoint, shown to the operator before resuming.

    Attributes:
        session_id: Session that wrote the checkpoint.
        current_table: Table that was in progress, if any.
        current_table_offset: Rows of current_table already confirmed.
        total_rows_migrated: Rows of completed tables.
        completed_tables: Tables already fully migrated.
        last_updated_at: When the checkpoint was last written.
    """

    session_id: str
    current_table: str | None
    current_table_offset: int
    total_rows_migrated: int
    completed_tables: tuple[str, ...]
    last_updated_at: datetime

    @classmethod
    def from_state(cls, state: CheckpointState) -> ResumeSummary:
        return cls(
            session_id=state.session_id,
            current_table=state.current_table,
            current_table_offset=state.current_table_offset,
            total_rows_migrated=state.total_rows_migrated,
            completed_tables=state.completed_tables,
            last_updated_at=state.last_updated_at,
        )


@dataclass
class MigrationResult:
    """
    Result of one orchestrator run.

    Attributes:
        phase: Terminal phase the run ended in.
        success: Whether every table was migrated and finalized.
        resumed: Whether the run resumed a previous session.
        tables_completed: Tables completed during this run.
        rows_migrated: Rows written during this run.
        duration_seconds: Wall time of the run.
        error_message: Error message if the run failed.
    """

    phase: MigrationPhase
    success: bool
    resumed: bool = False
    tables_completed: int = 0
    rows_migrated: int = 0
    duration_seconds: float = 0.0
    error_message: str | None = None


__all__ = [
    "Row",
    "DatabaseType",
    "TableDescriptor",
    "MigrationOrder",
    "MigrationPhase",
    "ResumeSummary",
    "MigrationResult",
]
