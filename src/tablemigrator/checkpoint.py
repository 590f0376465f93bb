"""
Durable checkpoint storage for resumable migrations.

The checkpoint records how far a migration session got: which tables are
finished, which table was in progress and how many of its rows were
confirmed written. It lives in a single JSON file that is replaced
atomically after every confirmed batch, so a process killed at any point
leaves either the previous or the next checkpoint on disk, never a torn one.

Usage:
    >>> store = CheckpointStore(Path("_migration_state.json"))
    >>> state = await store.load_existing()
    >>> if state is None:
    ...     state = await store.create_session(DatabaseType.SQLITE, DatabaseType.POSTGRESQL)
    >>> await store.update_progress("users", 25000)
    >>> await store.mark_table_complete("users")
    >>> await store.complete()
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tablemigrator.exceptions import CheckpointError
from tablemigrator.models import DatabaseType
from tablemigrator.observability import ATTR_SESSION_ID, ATTR_TABLE, Tracer, create_tracer

logger = logging.getLogger(__name__)


class CheckpointState(BaseModel):
    """
    Immutable snapshot of a migration session's progress.

    Every mutation of the store produces a new snapshot; a snapshot handed
    out by the store never changes underneath its holder.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., min_length=1)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Table in progress and its confirmed row offset
    current_table: str | None = None
    current_table_offset: int = Field(default=0, ge=0)

    completed_tables: tuple[str, ...] = ()
    total_rows_migrated: int = Field(default=0, ge=0)

    source_type: DatabaseType
    target_type: DatabaseType
    is_complete: bool = False

    def is_table_complete(self, table: str) -> bool:
        """Check if a table has been fully migrated in this session."""
        return table in self.completed_tables


class CheckpointStore:
    """
    Persists CheckpointState to a JSON file.

    All mutators serialize on one asyncio.Lock and persist before returning.
    File I/O runs in a worker thread so the event loop is never blocked by
    fsync.

    Args:
        path: Checkpoint file location.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        path: Path,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._state: CheckpointState | None = None
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def current_state(self) -> CheckpointState | None:
        """The active session snapshot, or None."""
        return self._state

    async def load_existing(self) -> CheckpointState | None:
        """
        Load a resumable checkpoint from disk.

        Returns:
            The stored state, or None if the file is missing, unreadable,
            malformed or belongs to a completed session.
        """
        async with self._lock:
            state = await asyncio.to_thread(self._read)
            if state is None:
                return None

            if state.is_complete:
                logger.debug("Ignoring completed checkpoint %s", state.session_id)
                return None

            self._state = state
            logger.info(
                "Loaded checkpoint for session %s (%d tables completed)",
                state.session_id,
                len(state.completed_tables),
                extra={
                    "session_id": state.session_id,
                    "current_table": state.current_table,
                    "offset": state.current_table_offset,
                },
            )
            return state

    async def create_session(
        self,
        source_type: DatabaseType,
        target_type: DatabaseType,
    ) -> CheckpointState:
        """
        Start a new session and persist it immediately.

        Any previously active state is discarded.
        """
        async with self._lock:
            now = datetime.now(UTC)
            state = CheckpointState(
                session_id=uuid4().hex,
                started_at=now,
                last_updated_at=now,
                source_type=source_type,
                target_type=target_type,
            )
            await self._swap(state)
            logger.info(
                "Created migration session %s (%s -> %s)",
                state.session_id,
                source_type.value,
                target_type.value,
                extra={"session_id": state.session_id},
            )
            return state

    async def update_progress(self, table: str, processed_rows: int) -> None:
        """
        Record the confirmed row offset of the table in progress.

        Args:
            table: Table being migrated.
            processed_rows: Rows of the table confirmed written.

        Raises:
            CheckpointError: If no session is active, the offset is negative
                or the table is already completed.
        """
        async with self._lock:
            state = self._require_state()
            if processed_rows < 0:
                raise CheckpointError(
                    f"Processed rows must be non-negative, got {processed_rows} for {table}"
                )
            if state.is_table_complete(table):
                raise CheckpointError(f"Table {table} is already completed")

            await self._swap(
                state.model_copy(
                    update={
                        "current_table": table,
                        "current_table_offset": processed_rows,
                        "last_updated_at": datetime.now(UTC),
                    }
                )
            )

    async def mark_table_complete(self, table: str) -> None:
        """
        Mark a table as fully migrated.

        The confirmed offset of the table is folded into total_rows_migrated
        and the in-progress table is reset. Marking a table twice does not
        list it twice.

        Raises:
            CheckpointError: If no session is active.
        """
        async with self._lock:
            state = self._require_state()

            completed = state.completed_tables
            if table not in completed:
                completed = completed + (table,)

            total = state.total_rows_migrated
            if state.current_table in (None, table):
                total += state.current_table_offset

            await self._swap(
                state.model_copy(
                    update={
                        "completed_tables": completed,
                        "total_rows_migrated": total,
                        "current_table": None,
                        "current_table_offset": 0,
                        "last_updated_at": datetime.now(UTC),
                    }
                )
            )
            logger.debug(
                "Table %s complete, %d rows migrated in session",
                table,
                total,
                extra={"session_id": state.session_id, "table": table},
            )

    async def complete(self) -> None:
        """
        Mark the session finished and delete the checkpoint file.

        A completed checkpoint never triggers a resume, even if the delete
        fails and the file survives.
        """
        async with self._lock:
            if self._state is not None:
                await self._swap(
                    self._state.model_copy(
                        update={"is_complete": True, "last_updated_at": datetime.now(UTC)}
                    )
                )
                logger.info("Migration session %s complete", self._state.session_id)
            await self._clear()

    async def clear(self) -> None:
        """Discard the active state and delete the checkpoint file."""
        async with self._lock:
            await self._clear()

    async def _clear(self) -> None:
        self._state = None
        await asyncio.to_thread(self._path.unlink, missing_ok=True)

    def _require_state(self) -> CheckpointState:
        if self._state is None:
            raise CheckpointError("No active migration session")
        return self._state

    async def _swap(self, state: CheckpointState) -> None:
        with self._tracer.span(
            "tablemigrator.checkpoint.persist",
            {
                ATTR_SESSION_ID: state.session_id,
                ATTR_TABLE: state.current_table or "",
            },
        ):
            await asyncio.to_thread(self._write, state)
        self._state = state

    def _write(self, state: CheckpointState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(state.model_dump_json(indent=2))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._path)

    def _read(self) -> CheckpointState | None:
        try:
            data = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read checkpoint %s: %s", self._path, e)
            return None

        try:
            return CheckpointState.model_validate_json(data)
        except ValidationError as e:
            logger.warning(
                "Ignoring malformed checkpoint %s: %d validation errors",
                self._path,
                e.error_count(),
            )
            return None


__all__ = [
    "CheckpointState",
    "CheckpointStore",
]
