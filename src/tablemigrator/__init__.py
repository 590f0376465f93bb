"""
tablemigrator - Resumable, monitored table migration between databases.

This library provides:
- Dependency-ordered migration of a fixed set of related tables
- Durable checkpoints after every batch, with resume after a crash
- A watchdog that detects stalled migrations
- A non-blocking progress channel with pluggable renderers
- SQLAlchemy async providers for SQLite, MySQL and PostgreSQL
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tablemigrator")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tablemigrator.checkpoint import CheckpointState, CheckpointStore
from tablemigrator.config import (
    ConnectionSettings,
    MigrationSettings,
    load_settings,
)
from tablemigrator.exceptions import (
    BatchWriteError,
    CheckpointError,
    ConfigurationError,
    ConnectivityError,
    DependencyCycleError,
    DuplicateKeyError,
    MigrationCancelledError,
    MigrationError,
    UnknownTableError,
)
from tablemigrator.interaction import NonInteractiveOperator, OperatorInterface
from tablemigrator.models import (
    DatabaseType,
    MigrationOrder,
    MigrationPhase,
    MigrationResult,
    ResumeSummary,
    Row,
    TableDescriptor,
)
from tablemigrator.orchestrator import MigrationOrchestrator
from tablemigrator.progress import (
    LoggingProgressRenderer,
    ProgressChannel,
    ProgressRenderer,
    TableProgress,
)
from tablemigrator.providers import (
    InMemorySourceProvider,
    InMemoryTargetProvider,
    ProviderFactory,
    SourceProvider,
    SqlAlchemyProviderFactory,
    SqlAlchemySourceProvider,
    SqlAlchemyTargetProvider,
    TargetProvider,
)
from tablemigrator.resolver import TableDependencyResolver
from tablemigrator.retry import RetryConfig, calculate_backoff
from tablemigrator.strategies import TableRegistry, TableStrategy
from tablemigrator.watchdog import WatchdogAlert, WatchdogMonitor

__all__ = [
    "__version__",
    # Models
    "DatabaseType",
    "MigrationOrder",
    "MigrationPhase",
    "MigrationResult",
    "ResumeSummary",
    "Row",
    "TableDescriptor",
    # Exceptions
    "MigrationError",
    "ConfigurationError",
    "ConnectivityError",
    "DuplicateKeyError",
    "BatchWriteError",
    "CheckpointError",
    "DependencyCycleError",
    "UnknownTableError",
    "MigrationCancelledError",
    # Configuration
    "MigrationSettings",
    "ConnectionSettings",
    "load_settings",
    "RetryConfig",
    "calculate_backoff",
    # Components
    "TableDependencyResolver",
    "CheckpointState",
    "CheckpointStore",
    "WatchdogAlert",
    "WatchdogMonitor",
    "ProgressChannel",
    "ProgressRenderer",
    "LoggingProgressRenderer",
    "TableProgress",
    "TableStrategy",
    "TableRegistry",
    "OperatorInterface",
    "NonInteractiveOperator",
    "MigrationOrchestrator",
    # Providers
    "SourceProvider",
    "TargetProvider",
    "InMemorySourceProvider",
    "InMemoryTargetProvider",
    "SqlAlchemySourceProvider",
    "SqlAlchemyTargetProvider",
    "ProviderFactory",
    "SqlAlchemyProviderFactory",
]
