"""
Operator interaction.

The orchestrator asks the operator two things: whether to resume a
previous session, and which databases to migrate between. Front ends
implement OperatorInterface; NonInteractiveOperator answers from fixed
values for unattended runs.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol, runtime_checkable

from tablemigrator.config import ConnectionSettings
from tablemigrator.models import DatabaseType, ResumeSummary

logger = logging.getLogger(__name__)


@runtime_checkable
class OperatorInterface(Protocol):
    """Decisions the orchestrator delegates to the operator."""

    def confirm_resume(self, summary: ResumeSummary) -> bool:
        """Return True to resume the summarized session, False to start fresh."""
        ...

    def configure(self) -> ConnectionSettings | None:
        """Return settings for a fresh run, or None to abandon it."""
        ...

    def configure_from_resume(
        self,
        source_type: DatabaseType,
        target_type: DatabaseType,
    ) -> ConnectionSettings:
        """Return settings for resuming a session between the given engines."""
        ...


class NonInteractiveOperator:
    """
    Operator answering from fixed connection settings.

    Args:
        connection: Connection settings for every run.
        resume: Whether to resume a previous session when one exists.

    Example:
        >>> operator = NonInteractiveOperator(connection, resume=False)
        >>> operator.configure() is connection
        True
    """

    def __init__(self, connection: ConnectionSettings, resume: bool = True) -> None:
        self._connection = connection
        self._resume = resume

    def confirm_resume(self, summary: ResumeSummary) -> bool:
        if self._resume:
            logger.info(
                "Resuming session %s: %d tables completed, %s at row %d",
                summary.session_id,
                len(summary.completed_tables),
                summary.current_table or "no table",
                summary.current_table_offset,
            )
        else:
            logger.info("Discarding previous session %s", summary.session_id)
        return self._resume

    def configure(self) -> ConnectionSettings | None:
        return self._connection

    def configure_from_resume(
        self,
        source_type: DatabaseType,
        target_type: DatabaseType,
    ) -> ConnectionSettings:
        if (source_type, target_type) != (
            self._connection.source_type,
            self._connection.target_type,
        ):
            logger.warning(
                "Checkpoint was written for %s -> %s, using those engine types",
                source_type.value,
                target_type.value,
            )
        return replace(self._connection, source_type=source_type, target_type=target_type)


__all__ = [
    "OperatorInterface",
    "NonInteractiveOperator",
]
