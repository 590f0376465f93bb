"""
MigrationOrchestrator - Drives a resumable table migration end to end.

The orchestrator composes the operator interface, provider factory,
checkpoint store, watchdog and progress channel into one sequential run:

    INIT -> RESUME_CHECK -> CONFIGURE -> APPLY_SCHEMA -> SESSION_READY
         -> MIGRATE_TABLES -> FINALIZE -> DONE

APPLY_SCHEMA is skipped when resuming. Any step may end the run in ERROR
or CANCELLED; in both cases the checkpoint keeps the last confirmed offset
so the next run can resume.

Usage:
    >>> orchestrator = MigrationOrchestrator(
    ...     operator=NonInteractiveOperator(connection),
    ...     provider_factory=SqlAlchemyProviderFactory(metadata),
    ...     checkpoint_store=CheckpointStore(settings.state_path),
    ...     watchdog=WatchdogMonitor(log_path=settings.watchdog_log_path),
    ...     settings=settings,
    ... )
    >>> result = await orchestrator.run()
    >>> result.success
    True
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from contextlib import AsyncExitStack

from tablemigrator.checkpoint import CheckpointState, CheckpointStore
from tablemigrator.config import MigrationSettings
from tablemigrator.exceptions import (
    BatchWriteError,
    ConnectivityError,
    DuplicateKeyError,
    MigrationCancelledError,
)
from tablemigrator.interaction import OperatorInterface
from tablemigrator.models import (
    MigrationOrder,
    MigrationPhase,
    MigrationResult,
    ResumeSummary,
    Row,
)
from tablemigrator.observability import (
    ATTR_BATCH_SIZE,
    ATTR_OFFSET,
    ATTR_SESSION_ID,
    ATTR_SOURCE_TYPE,
    ATTR_TABLE,
    ATTR_TARGET_TYPE,
    ATTR_WRITE_MODE,
    Tracer,
    create_tracer,
)
from tablemigrator.progress import ProgressChannel, ProgressRenderer
from tablemigrator.providers.factory import ProviderFactory
from tablemigrator.providers.interface import SourceProvider, TargetProvider
from tablemigrator.retry import RetryConfig, calculate_backoff
from tablemigrator.strategies import TableRegistry, TableStrategy
from tablemigrator.watchdog import WatchdogAlert, WatchdogMonitor

logger = logging.getLogger(__name__)

SOURCE_SCHEMA_TASK = "Applying source schema"
TARGET_SCHEMA_TASK = "Applying target schema"


class MigrationOrchestrator:
    """
    Runs one migration session, fresh or resumed.

    The main flow is a single task; batches are read, written and
    checkpointed strictly one after another. A page is only counted in the
    checkpoint after the target confirmed the write, so on restart at most
    one page is written twice, and that page goes through the
    duplicate-tolerant write path.

    Example:
        >>> orchestrator = MigrationOrchestrator(operator, factory, store, watchdog, settings)
        >>> loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        >>> result = await orchestrator.run()

    Args:
        operator: Answers the resume and configuration prompts.
        provider_factory: Builds source and target providers.
        checkpoint_store: Durable progress record.
        watchdog: Hang detector; heartbeated after every confirmed batch.
        settings: Batch size, retry and watchdog settings.
        table_registry: Strategy per table. Defaults to a plain strategy
            for every table of the migration order.
        retry_config: Batch retry policy. Defaults to settings.retry_config.
        progress_channel: Channel to report to. A new channel per run is
            created when omitted.
        progress_renderer: Renderer for channels created per run.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        operator: OperatorInterface,
        provider_factory: ProviderFactory,
        checkpoint_store: CheckpointStore,
        watchdog: WatchdogMonitor,
        settings: MigrationSettings,
        *,
        table_registry: TableRegistry | None = None,
        retry_config: RetryConfig | None = None,
        progress_channel: ProgressChannel | None = None,
        progress_renderer: ProgressRenderer | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._operator = operator
        self._factory = provider_factory
        self._checkpoint = checkpoint_store
        self._watchdog = watchdog
        self._settings = settings
        self._registry = table_registry
        self._retry_config = retry_config or settings.retry_config
        self._progress_channel = progress_channel
        self._progress_renderer = progress_renderer

        self._phase = MigrationPhase.INIT
        self._cancel_requested = False
        self._progress: ProgressChannel | None = None
        self._resumed = False
        self._rows_migrated = 0
        self._tables_completed = 0

        self._watchdog.add_alert_handler(self._on_watchdog_alert)

    @property
    def phase(self) -> MigrationPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def is_cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """
        Request cooperative cancellation.

        The run stops at the next batch or schema boundary and keeps its
        checkpoint. Safe to call from a signal handler.
        """
        if not self._cancel_requested:
            logger.info("Cancellation requested")
        self._cancel_requested = True

    async def run(self) -> MigrationResult:
        """
        Run the migration.

        Failures never escape as exceptions, except asyncio.CancelledError,
        which is re-raised after cleanup.

        Returns:
            MigrationResult describing the terminal phase.
        """
        start_time = time.monotonic()
        self._phase = MigrationPhase.INIT
        self._resumed = False
        self._rows_migrated = 0
        self._tables_completed = 0
        error_message: str | None = None

        progress = self._progress_channel or ProgressChannel(self._progress_renderer)
        self._progress = progress
        consumer = asyncio.create_task(progress.start_async(), name="tablemigrator-progress")

        with self._tracer.span("tablemigrator.orchestrator.run", {}):
            try:
                async with AsyncExitStack() as stack:
                    await self._run_phases(stack)
                self._set_phase(MigrationPhase.DONE)
            except MigrationCancelledError as e:
                self._set_phase(MigrationPhase.CANCELLED)
                error_message = str(e)
                logger.warning(
                    "Migration cancelled: %s. Progress has been saved; restart to resume.",
                    e,
                )
            except asyncio.CancelledError:
                self._set_phase(MigrationPhase.CANCELLED)
                logger.warning("Migration task cancelled. Progress has been saved.")
                raise
            except Exception as e:
                self._set_phase(MigrationPhase.ERROR)
                error_message = str(e)
                progress.report_error(error_message)
                logger.exception(
                    "Migration failed: %s. Progress has been saved; restart to resume.",
                    e,
                )
            finally:
                self._watchdog.stop()
                progress.complete()
                await consumer
                self._progress = None

        duration = time.monotonic() - start_time
        success = self._phase == MigrationPhase.DONE
        if success:
            logger.info(
                "Migration complete: %d rows in %d tables, %.1fs",
                self._rows_migrated,
                self._tables_completed,
                duration,
            )

        return MigrationResult(
            phase=self._phase,
            success=success,
            resumed=self._resumed,
            tables_completed=self._tables_completed,
            rows_migrated=self._rows_migrated,
            duration_seconds=duration,
            error_message=error_message,
        )

    async def _run_phases(self, stack: AsyncExitStack) -> None:
        self._set_phase(MigrationPhase.RESUME_CHECK)
        state = await self._checkpoint.load_existing()
        if state is not None:
            if self._operator.confirm_resume(ResumeSummary.from_state(state)):
                self._resumed = True
            else:
                await self._checkpoint.clear()
                state = None

        self._set_phase(MigrationPhase.CONFIGURE)
        if state is not None:
            connection = self._operator.configure_from_resume(state.source_type, state.target_type)
        else:
            connection = self._operator.configure()
            if connection is None:
                raise MigrationCancelledError("Operator declined to configure the migration")
        connection.validate()

        source = await stack.enter_async_context(self._factory.create_source(connection))
        target = await stack.enter_async_context(self._factory.create_target(connection))
        if not await source.test_connection():
            raise ConnectivityError("source", source.database_type.value)
        if not await target.test_connection():
            raise ConnectivityError("target", target.database_type.value)

        if state is None:
            self._set_phase(MigrationPhase.APPLY_SCHEMA)
            await self._apply_schema(source, target)

        self._set_phase(MigrationPhase.SESSION_READY)
        if state is None:
            state = await self._checkpoint.create_session(
                source.database_type, target.database_type
            )
        else:
            logger.info(
                "Resuming session %s: skipping %d completed tables",
                state.session_id,
                len(state.completed_tables),
            )

        order = source.get_migration_order()
        registry = self._registry or TableRegistry.from_order(order)
        registry.ensure_covers(order)

        remaining = [name for name in order.names if not state.is_table_complete(name)]
        remaining_rows = await self._count_remaining_rows(source, remaining, state)
        logger.info(
            "Tables: %d remaining of %d total. Rows to migrate: %d",
            len(remaining),
            len(order),
            remaining_rows,
            extra={"session_id": state.session_id},
        )

        self._set_phase(MigrationPhase.MIGRATE_TABLES)
        with self._tracer.span(
            "tablemigrator.orchestrator.migrate_tables",
            {
                ATTR_SESSION_ID: state.session_id,
                ATTR_SOURCE_TYPE: source.database_type.value,
                ATTR_TARGET_TYPE: target.database_type.value,
            },
        ):
            await self._migrate_tables(source, target, order, registry, state)

        self._set_phase(MigrationPhase.FINALIZE)
        await target.update_sequences()
        await self._checkpoint.complete()

    async def _apply_schema(self, source: SourceProvider, target: TargetProvider) -> None:
        progress = self._require_progress()
        for task, provider in ((SOURCE_SCHEMA_TASK, source), (TARGET_SCHEMA_TASK, target)):
            self._check_cancelled()
            progress.report_table_start(task, 0, indeterminate=True)
            await provider.apply_schema()
            progress.report_table_complete(task)

    async def _count_remaining_rows(
        self,
        source: SourceProvider,
        tables: Sequence[str],
        state: CheckpointState,
    ) -> int:
        total = 0
        for table in tables:
            count = await source.get_count(table)
            if state.current_table == table:
                count = max(0, count - state.current_table_offset)
            total += count
        return total

    async def _migrate_tables(
        self,
        source: SourceProvider,
        target: TargetProvider,
        order: MigrationOrder,
        registry: TableRegistry,
        state: CheckpointState,
    ) -> None:
        progress = self._require_progress()
        self._watchdog.start("Starting migration")

        tables = [name for name in order.names if not state.is_table_complete(name)]
        for table in tables:
            progress.report_table_start(table, 0, indeterminate=True)

        for table in tables:
            self._check_cancelled()
            start_offset = 0
            ignore_duplicates = False
            if self._resumed and state.current_table == table:
                start_offset = state.current_table_offset
                # the first page may overlap rows written before the last checkpoint
                ignore_duplicates = True

            await self._migrate_table(
                source,
                target,
                registry.get(table),
                start_offset,
                ignore_duplicates,
            )

    async def _migrate_table(
        self,
        source: SourceProvider,
        target: TargetProvider,
        strategy: TableStrategy,
        start_offset: int,
        ignore_duplicates: bool,
    ) -> None:
        progress = self._require_progress()
        table = strategy.name
        batch_size = self._settings.batch_size

        with self._tracer.span(
            "tablemigrator.orchestrator.migrate_table",
            {ATTR_TABLE: table, ATTR_OFFSET: start_offset, ATTR_BATCH_SIZE: batch_size},
        ):
            total = await source.get_count(table)
            if total == 0 or start_offset >= total:
                progress.report_table_complete(table)
                await self._checkpoint.mark_table_complete(table)
                self._tables_completed += 1
                return

            progress.report_table_start(table, total - start_offset)
            logger.info(
                "Migrating %s: %d rows from offset %d",
                table,
                total - start_offset,
                start_offset,
                extra={"table": table, "offset": start_offset, "total": total},
            )

            offset = start_offset
            first_page = True
            async for page in source.read_batches_from_offset(table, batch_size, start_offset):
                self._check_cancelled()
                rows = strategy.prepare(page, target.database_type)
                await self._write_with_retry(
                    target,
                    table,
                    rows,
                    offset,
                    ignore_duplicates=ignore_duplicates and first_page,
                )
                first_page = False

                offset += len(page)
                await self._checkpoint.update_progress(table, offset)
                self._rows_migrated += len(page)
                progress.report_progress(table, offset - start_offset)
                self._watchdog.heartbeat(f"Table: {table}, Offset: {offset}/{total}")

            progress.report_table_complete(table)
            await self._checkpoint.mark_table_complete(table)
            self._tables_completed += 1

    async def _write_with_retry(
        self,
        target: TargetProvider,
        table: str,
        rows: list[Row],
        offset: int,
        *,
        ignore_duplicates: bool,
    ) -> None:
        progress = self._require_progress()
        config = self._retry_config
        mode = "ignore_duplicates" if ignore_duplicates else "strict"
        attempts = 0

        while True:
            try:
                with self._tracer.span(
                    "tablemigrator.orchestrator.write_batch",
                    {
                        ATTR_TABLE: table,
                        ATTR_OFFSET: offset,
                        ATTR_BATCH_SIZE: len(rows),
                        ATTR_WRITE_MODE: mode,
                    },
                ):
                    if ignore_duplicates:
                        await target.write_batch_ignore_duplicates(table, rows)
                    else:
                        await target.write_batch(table, rows)
                return
            except DuplicateKeyError:
                # target already holds data; retrying cannot help
                raise
            except Exception as e:
                attempts += 1
                message = f"Batch failed ({attempts}/{config.max_retries}) for {table}: {e}"
                progress.report_error(message)
                logger.warning(
                    "Batch failed (%d/%d) for %s at offset %d: %s",
                    attempts,
                    config.max_retries,
                    table,
                    offset,
                    e,
                    extra={"table": table, "offset": offset, "attempt": attempts},
                )
                if attempts >= config.max_retries:
                    raise BatchWriteError(table, offset, attempts, str(e)) from e

                self._check_cancelled()
                await asyncio.sleep(calculate_backoff(attempts - 1, config))

    def _on_watchdog_alert(self, alert: WatchdogAlert) -> None:
        progress = self._progress
        if progress is None:
            return
        progress.report_error(
            f"No activity for {alert.elapsed_minutes:.1f} minutes. "
            f"Last activity: {alert.last_context}"
        )

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise MigrationCancelledError("Migration cancelled")

    def _require_progress(self) -> ProgressChannel:
        if self._progress is None:
            raise RuntimeError("Progress channel is only available during run()")
        return self._progress

    def _set_phase(self, phase: MigrationPhase) -> None:
        if phase != self._phase:
            logger.debug("Migration phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase


__all__ = [
    "SOURCE_SCHEMA_TASK",
    "TARGET_SCHEMA_TASK",
    "MigrationOrchestrator",
]
