"""
Provider factories.

The orchestrator does not know how providers are built; it asks a
ProviderFactory for a source and a target once the operator has supplied
connection settings.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from sqlalchemy import MetaData

from tablemigrator.config import ConnectionSettings
from tablemigrator.providers.interface import SourceProvider, TargetProvider
from tablemigrator.providers.sqlalchemy import (
    SqlAlchemySourceProvider,
    SqlAlchemyTargetProvider,
)
from tablemigrator.resolver import TableDependencyResolver


@runtime_checkable
class ProviderFactory(Protocol):
    """Builds source and target providers from connection settings."""

    def create_source(self, connection: ConnectionSettings) -> SourceProvider: ...

    def create_target(self, connection: ConnectionSettings) -> TargetProvider: ...


class SqlAlchemyProviderFactory:
    """
    Builds SQLAlchemy providers over a fixed table MetaData.

    Args:
        metadata: Table definitions of the migratable tables.
        priority: Fixed priority list for ordering. Defaults to the order
            tables were defined in metadata.
        resolver: Dependency resolver shared by created sources.
        enable_tracing: Whether created providers trace (default True).
    """

    def __init__(
        self,
        metadata: MetaData,
        priority: Sequence[str] | None = None,
        resolver: TableDependencyResolver | None = None,
        *,
        enable_tracing: bool = True,
    ) -> None:
        self._metadata = metadata
        self._priority = priority
        self._resolver = resolver or TableDependencyResolver()
        self._enable_tracing = enable_tracing

    def create_source(self, connection: ConnectionSettings) -> SourceProvider:
        return SqlAlchemySourceProvider.from_url(
            connection.source_url,
            self._metadata,
            connection.source_type,
            priority=self._priority,
            resolver=self._resolver,
            enable_tracing=self._enable_tracing,
        )

    def create_target(self, connection: ConnectionSettings) -> TargetProvider:
        return SqlAlchemyTargetProvider.from_url(
            connection.target_url,
            self._metadata,
            connection.target_type,
            enable_tracing=self._enable_tracing,
        )


__all__ = [
    "ProviderFactory",
    "SqlAlchemyProviderFactory",
]
