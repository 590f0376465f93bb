"""
Unit tests for operator interaction.

Tests cover:
- NonInteractiveOperator resume decisions
- Engine types taken from a resumed checkpoint
"""

import logging
from datetime import UTC, datetime

import pytest

from tablemigrator.config import ConnectionSettings
from tablemigrator.interaction import NonInteractiveOperator, OperatorInterface
from tablemigrator.models import DatabaseType, ResumeSummary


@pytest.fixture
def summary() -> ResumeSummary:
    return ResumeSummary(
        session_id="abc",
        current_table="matches",
        current_table_offset=4,
        total_rows_migrated=7,
        completed_tables=("players",),
        last_updated_at=datetime.now(UTC),
    )


class TestNonInteractiveOperator:
    """Tests for NonInteractiveOperator."""

    def test_satisfies_protocol(self, connection: ConnectionSettings) -> None:
        """Test the operator implements OperatorInterface."""
        assert isinstance(NonInteractiveOperator(connection), OperatorInterface)

    def test_resumes_by_default(
        self, connection: ConnectionSettings, summary: ResumeSummary
    ) -> None:
        """Test the default answer is to resume."""
        assert NonInteractiveOperator(connection).confirm_resume(summary) is True

    def test_fresh_discards(self, connection: ConnectionSettings, summary: ResumeSummary) -> None:
        """Test resume=False declines the previous session."""
        assert NonInteractiveOperator(connection, resume=False).confirm_resume(summary) is False

    def test_configure_returns_connection(self, connection: ConnectionSettings) -> None:
        """Test a fresh run uses the given settings."""
        assert NonInteractiveOperator(connection).configure() is connection

    def test_configure_from_resume_uses_checkpoint_engines(
        self, connection: ConnectionSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test engine types come from the checkpoint, with a warning on mismatch."""
        operator = NonInteractiveOperator(connection)

        with caplog.at_level(logging.WARNING, logger="tablemigrator.interaction"):
            resumed = operator.configure_from_resume(DatabaseType.MYSQL, DatabaseType.MYSQL)

        assert resumed.source_type == DatabaseType.MYSQL
        assert resumed.target_type == DatabaseType.MYSQL
        assert resumed.target_url == connection.target_url
        assert "Checkpoint was written for mysql -> mysql" in caplog.text
