"""
Progress reporting for migrations.

The migration loop and the watchdog thread produce progress events; a single
consumer task applies them in order to the display state and hands each one
to a renderer. Producers never block and never touch the display state
directly, so a slow or broken renderer cannot stall the migration.

Usage:
    >>> channel = ProgressChannel()
    >>> consumer = asyncio.create_task(channel.start_async())
    >>> channel.report_table_start("users", 100_000)
    >>> channel.report_progress("users", 25_000)
    >>> channel.report_table_complete("users")
    >>> channel.complete()
    >>> await consumer
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ProgressEvent:
    """Base class for progress events."""


@dataclass(frozen=True)
class TableStarted(ProgressEvent):
    """
    A table was announced, or its bounds changed.

    Attributes:
        table: Table name.
        total_rows: Rows expected; 0 when unknown.
        indeterminate: Whether progress cannot be measured yet.
    """

    table: str
    total_rows: int
    indeterminate: bool = False


@dataclass(frozen=True)
class RowsProcessed(ProgressEvent):
    """Rows confirmed written for a table since it was (re-)announced."""

    table: str
    processed_rows: int


@dataclass(frozen=True)
class TableCompleted(ProgressEvent):
    table: str


@dataclass(frozen=True)
class MigrationErrorReported(ProgressEvent):
    """A recoverable or fatal error message for the operator."""

    message: str


@dataclass(frozen=True)
class ProgressFinished(ProgressEvent):
    """Sentinel that ends the consumer after the backlog before it is drained."""


# =============================================================================
# Display state
# =============================================================================


@dataclass(frozen=True)
class TableProgress:
    """
    Display state of one table.

    Attributes:
        table: Table name.
        total_rows: Rows expected; 0 when unknown.
        processed_rows: Rows confirmed written.
        indeterminate: Whether the bar shows activity instead of a fraction.
        completed: Whether the table is finished.
    """

    table: str
    total_rows: int
    processed_rows: int = 0
    indeterminate: bool = False
    completed: bool = False

    @property
    def percent(self) -> float | None:
        """Completion percentage, or None while indeterminate."""
        if self.completed:
            return 100.0
        if self.indeterminate or self.total_rows <= 0:
            return None
        return min(100.0, self.processed_rows * 100.0 / self.total_rows)


@runtime_checkable
class ProgressRenderer(Protocol):
    """
    Receives each applied progress event together with the display state.

    Renderers run on the consumer task; exceptions they raise are logged
    and the event is skipped.
    """

    def render(self, event: ProgressEvent, tables: Mapping[str, TableProgress]) -> None: ...


class LoggingProgressRenderer:
    """Renders progress events as log records."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def render(self, event: ProgressEvent, tables: Mapping[str, TableProgress]) -> None:
        if isinstance(event, TableStarted):
            if event.indeterminate or event.total_rows == 0:
                self._log.info("Queued %s", event.table)
            else:
                self._log.info("Migrating %s (%d rows)", event.table, event.total_rows)
        elif isinstance(event, RowsProcessed):
            progress = tables.get(event.table)
            percent = progress.percent if progress is not None else None
            if percent is None:
                self._log.debug("%s: %d rows", event.table, event.processed_rows)
            else:
                self._log.debug(
                    "%s: %d rows (%.1f%%)", event.table, event.processed_rows, percent
                )
        elif isinstance(event, TableCompleted):
            self._log.info("Completed %s", event.table)
        elif isinstance(event, MigrationErrorReported):
            self._log.warning("Error: %s", event.message)


# =============================================================================
# Channel
# =============================================================================


class ProgressChannel:
    """
    Unbounded multi-producer, single-consumer progress channel.

    Report methods are safe to call from the channel's event loop and from
    other threads; calls from other threads are marshalled onto the loop.
    Events reported before the consumer starts are buffered. After
    complete(), further reports are dropped.

    Args:
        renderer: Receives applied events. Defaults to LoggingProgressRenderer.
    """

    def __init__(self, renderer: ProgressRenderer | None = None) -> None:
        self._renderer = renderer or LoggingProgressRenderer()
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._tables: dict[str, TableProgress] = {}
        self._errors: list[str] = []
        self._closed = False
        self._consuming = False
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def tables(self) -> Mapping[str, TableProgress]:
        """Snapshot of the display state, in announcement order."""
        return dict(self._tables)

    @property
    def errors(self) -> list[str]:
        """Error messages applied so far."""
        return list(self._errors)

    def report_table_start(
        self,
        table: str,
        total_rows: int,
        indeterminate: bool = False,
    ) -> None:
        self._enqueue(TableStarted(table, total_rows, indeterminate))

    def report_progress(self, table: str, processed_rows: int) -> None:
        self._enqueue(RowsProcessed(table, processed_rows))

    def report_table_complete(self, table: str) -> None:
        self._enqueue(TableCompleted(table))

    def report_error(self, message: str) -> None:
        self._enqueue(MigrationErrorReported(message))

    def complete(self) -> None:
        """
        Close the channel.

        The consumer finishes after applying every event reported before
        this call. Idempotent.
        """
        if self._closed:
            return
        self._enqueue(ProgressFinished())
        self._closed = True

    async def start_async(self) -> None:
        """
        Consume events until complete() is called and the backlog drained.

        Raises:
            RuntimeError: If a consumer is already running.
        """
        if self._consuming:
            raise RuntimeError("ProgressChannel already has a consumer")
        self._consuming = True
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        try:
            while True:
                event = await self._queue.get()
                if not isinstance(event, ProgressFinished):
                    self._apply(event)
                self._render(event)
                if isinstance(event, ProgressFinished):
                    break
        finally:
            self._consuming = False

    def _enqueue(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s reported after completion", type(event).__name__)
            return

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is None or running is loop:
            self._queue.put_nowait(event)
            return

        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            # loop already closed
            logger.debug("Dropping %s: event loop is closed", type(event).__name__)

    def _apply(self, event: ProgressEvent) -> None:
        if isinstance(event, TableStarted):
            indeterminate = event.indeterminate or event.total_rows == 0
            existing = self._tables.get(event.table)
            if existing is not None:
                self._tables[event.table] = replace(
                    existing,
                    total_rows=event.total_rows,
                    indeterminate=indeterminate,
                )
            else:
                self._tables[event.table] = TableProgress(
                    table=event.table,
                    total_rows=event.total_rows,
                    indeterminate=indeterminate,
                )
        elif isinstance(event, RowsProcessed):
            existing = self._tables.get(event.table)
            if existing is not None:
                self._tables[event.table] = replace(existing, processed_rows=event.processed_rows)
        elif isinstance(event, TableCompleted):
            existing = self._tables.get(event.table)
            if existing is not None:
                self._tables[event.table] = replace(
                    existing,
                    processed_rows=max(existing.total_rows, existing.processed_rows),
                    indeterminate=False,
                    completed=True,
                )
        elif isinstance(event, MigrationErrorReported):
            self._errors.append(event.message)

    def _render(self, event: ProgressEvent) -> None:
        try:
            self._renderer.render(event, self._tables)
        except Exception:
            logger.exception("Progress renderer failed on %s", type(event).__name__)


__all__ = [
    "ProgressEvent",
    "TableStarted",
    "RowsProcessed",
    "TableCompleted",
    "MigrationErrorReported",
    "ProgressFinished",
    "TableProgress",
    "ProgressRenderer",
    "LoggingProgressRenderer",
    "ProgressChannel",
]
