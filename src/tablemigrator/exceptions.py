"""
Exceptions raised by the table migration engine.

Exception Hierarchy:
    MigrationError (base)
    +-- ConfigurationError
    +-- ConnectivityError
    +-- DuplicateKeyError
    +-- BatchWriteError
    +-- CheckpointError
    +-- DependencyCycleError
    +-- UnknownTableError
    +-- MigrationCancelledError

Only BatchWriteError wraps failures that were retried; every other error is
fatal at the point it is raised. A corrupt or missing checkpoint is never an
error (see CheckpointStore.load_existing).
"""

from __future__ import annotations

from collections.abc import Sequence


class MigrationError(Exception):
    """Base exception for the table migration engine."""

    pass


class ConfigurationError(MigrationError):
    """Raised when connection settings are unset, placeholders, or unsupported."""

    pass


class ConnectivityError(MigrationError):
    """Raised when the initial connection probe to a database fails."""

    def __init__(self, role: str, database_type: str) -> None:
        self.role = role
        self.database_type = database_type
        super().__init__(f"Unable to connect to {role} database ({database_type})")


class DuplicateKeyError(MigrationError):
    """
    Raised by a strict batch write when the target already holds a row.

    On the strict write path this means the target database is not empty
    (or is the wrong database); the run aborts without further writes.
    """

    def __init__(self, table: str, message: str | None = None) -> None:
        self.table = table
        super().__init__(
            message
            or f"Data already exists in target table {table}. Please target an empty database."
        )


class BatchWriteError(MigrationError):
    """
    Raised when a batch write keeps failing after all retries.

    Attributes:
        table: Table being written.
        offset: Row offset of the failed page in the source table.
        attempts: Number of write attempts made.
    """

    def __init__(self, table: str, offset: int, attempts: int, message: str) -> None:
        self.table = table
        self.offset = offset
        self.attempts = attempts
        super().__init__(
            f"Batch write for {table} at offset {offset} failed after {attempts} attempts: "
            f"{message}"
        )


class CheckpointError(MigrationError):
    """Raised when a checkpoint mutation is invalid (e.g. no active session)."""

    pass


class DependencyCycleError(MigrationError):
    """Raised by a strict resolver when foreign keys form a cycle."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        super().__init__(f"Circular foreign key reference: {' -> '.join(self.path)}")


class UnknownTableError(MigrationError):
    """Raised when no batch strategy is registered for a table."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"No batch strategy registered for table {table}")


class MigrationCancelledError(MigrationError):
    """Raised internally when the cooperative cancel signal is observed."""

    pass


__all__ = [
    "MigrationError",
    "ConfigurationError",
    "ConnectivityError",
    "DuplicateKeyError",
    "BatchWriteError",
    "CheckpointError",
    "DependencyCycleError",
    "UnknownTableError",
    "MigrationCancelledError",
]
