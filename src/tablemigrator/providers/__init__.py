"""
Database providers for table migration.

Providers read pages of rows from a source database and write them to a
target database:

- SourceProvider / TargetProvider: Abstract interfaces
- InMemorySourceProvider / InMemoryTargetProvider: Dictionary-backed, for tests
- SqlAlchemySourceProvider / SqlAlchemyTargetProvider: SQLAlchemy async engines
- ProviderFactory / SqlAlchemyProviderFactory: Build providers from settings
"""

from tablemigrator.providers.factory import ProviderFactory, SqlAlchemyProviderFactory
from tablemigrator.providers.in_memory import InMemorySourceProvider, InMemoryTargetProvider
from tablemigrator.providers.interface import SourceProvider, TargetProvider
from tablemigrator.providers.sqlalchemy import (
    SqlAlchemySourceProvider,
    SqlAlchemyTargetProvider,
    is_duplicate_key_error,
)

__all__ = [
    "SourceProvider",
    "TargetProvider",
    "InMemorySourceProvider",
    "InMemoryTargetProvider",
    "SqlAlchemySourceProvider",
    "SqlAlchemyTargetProvider",
    "is_duplicate_key_error",
    "ProviderFactory",
    "SqlAlchemyProviderFactory",
]
