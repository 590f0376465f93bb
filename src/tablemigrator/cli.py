"""
Command line entry point.

Usage:
    python -m tablemigrator --metadata myapp.models:metadata \\
        --source-type sqlite --source-url sqlite+aiosqlite:///Database.db \\
        --target-type postgresql --target-url postgresql+asyncpg://user:pw@host/db

Connection URLs default to the TABLEMIGRATOR_SOURCE_URL and
TABLEMIGRATOR_TARGET_URL environment variables. Ctrl+C stops the migration
at the next batch boundary; running the same command again resumes it.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from sqlalchemy import MetaData

from tablemigrator.checkpoint import CheckpointStore
from tablemigrator.config import (
    DEFAULT_SETTINGS_FILE_NAME,
    ConnectionSettings,
    MigrationSettings,
    load_settings,
)
from tablemigrator.exceptions import ConfigurationError
from tablemigrator.interaction import NonInteractiveOperator
from tablemigrator.models import DatabaseType, MigrationResult
from tablemigrator.orchestrator import MigrationOrchestrator
from tablemigrator.providers.factory import SqlAlchemyProviderFactory
from tablemigrator.resolver import TableDependencyResolver
from tablemigrator.strategies import TableRegistry
from tablemigrator.watchdog import WatchdogMonitor

logger = logging.getLogger(__name__)

SOURCE_URL_ENV = "TABLEMIGRATOR_SOURCE_URL"
TARGET_URL_ENV = "TABLEMIGRATOR_TARGET_URL"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tablemigrator",
        description="Copy a fixed set of related tables between databases, resumably.",
    )
    parser.add_argument(
        "--metadata",
        required=True,
        help="SQLAlchemy MetaData (or declarative base) as module:attribute",
    )
    parser.add_argument(
        "--source-type",
        required=True,
        choices=[t.value for t in DatabaseType if t.can_be_source],
        help="Source database engine",
    )
    parser.add_argument(
        "--source-url",
        default=os.environ.get(SOURCE_URL_ENV),
        help=f"Source SQLAlchemy async URL (default: ${SOURCE_URL_ENV})",
    )
    parser.add_argument(
        "--target-type",
        required=True,
        choices=[t.value for t in DatabaseType if t.can_be_target],
        help="Target database engine",
    )
    parser.add_argument(
        "--target-url",
        default=os.environ.get(TARGET_URL_ENV),
        help=f"Target SQLAlchemy async URL (default: ${TARGET_URL_ENV})",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=Path(DEFAULT_SETTINGS_FILE_NAME),
        help="Settings file, created with defaults if missing",
    )
    parser.add_argument(
        "--priority",
        type=parse_priority,
        default=None,
        help="Comma-separated table priority list (default: metadata order)",
    )
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Discard any saved checkpoint instead of resuming",
    )
    parser.add_argument(
        "--strict-cycles",
        action="store_true",
        help="Fail on circular foreign keys instead of dropping the edge",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging, and log every heartbeat to the watchdog log",
    )
    return parser


def parse_priority(value: str) -> list[str]:
    """Split a comma-separated table list, ignoring blanks."""
    tables = [name.strip() for name in value.split(",") if name.strip()]
    if not tables:
        raise argparse.ArgumentTypeError("priority list is empty")
    return tables


def load_metadata(reference: str) -> MetaData:
    """
    Import a MetaData from a ``module:attribute`` reference.

    A declarative base (anything with a ``metadata`` attribute) is accepted
    in place of a MetaData.

    Raises:
        ConfigurationError: If the reference cannot be resolved.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Expected module:attribute, got {reference!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import {module_name}: {e}") from e

    obj = module
    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigurationError(f"{module_name} has no attribute {attribute}") from e

    if not isinstance(obj, MetaData):
        obj = getattr(obj, "metadata", None)
    if not isinstance(obj, MetaData):
        raise ConfigurationError(f"{reference} is not a SQLAlchemy MetaData")
    return obj


def build_orchestrator(
    args: argparse.Namespace,
    metadata: MetaData,
    settings: MigrationSettings,
) -> MigrationOrchestrator:
    connection = ConnectionSettings(
        source_type=DatabaseType(args.source_type),
        source_url=args.source_url or "",
        target_type=DatabaseType(args.target_type),
        target_url=args.target_url or "",
    )
    resolver = TableDependencyResolver(strict=args.strict_cycles)
    return MigrationOrchestrator(
        operator=NonInteractiveOperator(connection, resume=not args.fresh),
        provider_factory=SqlAlchemyProviderFactory(metadata, args.priority, resolver),
        checkpoint_store=CheckpointStore(settings.state_path),
        watchdog=WatchdogMonitor(
            settings.watchdog_timeout_seconds,
            settings.watchdog_poll_interval_seconds,
            settings.watchdog_log_path,
            verbose=settings.verbose_logging,
        ),
        settings=settings,
        table_registry=TableRegistry.from_metadata(metadata),
    )


async def run_migration(orchestrator: MigrationOrchestrator) -> MigrationResult:
    """Run the orchestrator with SIGINT mapped to cooperative cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        # not supported on this platform or outside the main thread
        installed = False

    try:
        return await orchestrator.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        metadata = load_metadata(args.metadata)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    settings = load_settings(args.settings, base_dir=Path.cwd())
    if args.verbose and not settings.verbose_logging:
        settings = replace(settings, verbose_logging=True)

    orchestrator = build_orchestrator(args, metadata, settings)
    result = asyncio.run(run_migration(orchestrator))

    if result.success:
        logger.info(
            "Migration finished: %d rows, %d tables in %.1fs",
            result.rows_migrated,
            result.tables_completed,
            result.duration_seconds,
        )
        return 0

    logger.error("Migration ended in %s: %s", result.phase.value, result.error_message)
    return 1


if __name__ == "__main__":
    sys.exit(main())
