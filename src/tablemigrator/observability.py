"""
Composition-based tracing for the migration engine.

Components receive a Tracer as a dependency instead of talking to
OpenTelemetry directly:

    >>> from tablemigrator.observability import create_tracer
    >>>
    >>> class MyComponent:
    ...     def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def operation(self, table: str) -> None:
    ...         with self._tracer.span("tablemigrator.component.operation", {ATTR_TABLE: table}):
    ...             await self._do_operation()

Note:
    OpenTelemetry is an optional dependency. When it is not installed,
    create_tracer() returns a NullTracer and no spans are created.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


# =============================================================================
# Span Attributes
# =============================================================================

ATTR_TABLE = "tablemigrator.table"
"""Name of the table being migrated."""

ATTR_OFFSET = "tablemigrator.offset"
"""Row offset within the source table (integer)."""

ATTR_BATCH_SIZE = "tablemigrator.batch.size"
"""Number of rows in a batch (integer)."""

ATTR_WRITE_MODE = "tablemigrator.write.mode"
"""Batch write path: 'strict' or 'ignore_duplicates'."""

ATTR_SESSION_ID = "tablemigrator.session.id"
"""Checkpoint session identifier."""

ATTR_SOURCE_TYPE = "tablemigrator.source.type"
"""Source database type."""

ATTR_TARGET_TYPE = "tablemigrator.target.type"
"""Target database type."""


@runtime_checkable
class Tracer(Protocol):
    """
    Protocol for tracers that can create tracing spans.

    Implementations:
    - NullTracer: No-op tracer for when tracing is disabled
    - OpenTelemetryTracer: Wrapper around OpenTelemetry tracer
    - MockTracer: Records span names and attributes for tests
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Create a tracing span context manager.

        Args:
            name: Span name (e.g., "tablemigrator.orchestrator.write_batch")
            attributes: Span attributes (optional)

        Returns:
            Context manager that yields Span or None
        """
        ...

    @property
    def enabled(self) -> bool:
        """Check if tracing is active and will create real spans."""
        ...


class NullTracer:
    """
    No-op tracer implementation for when tracing is disabled.

    Example:
        >>> tracer = NullTracer()
        >>> with tracer.span("operation"):  # Does nothing
        ...     do_work()
        >>> tracer.enabled  # False
    """

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        """Create a no-op span context (yields None)."""
        yield None

    @property
    def enabled(self) -> bool:
        """Always returns False for NullTracer."""
        return False


class OpenTelemetryTracer:
    """
    OpenTelemetry tracer implementation.

    Args:
        tracer_name: Name for the tracer (typically __name__)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """Create an OpenTelemetry span context."""
        return self._tracer.start_as_current_span(
            name,
            attributes=attributes or {},
        )

    @property
    def enabled(self) -> bool:
        """Always returns True for OpenTelemetryTracer."""
        return True


class MockTracer:
    """
    Mock tracer for testing that records span information.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("operation", {"key": "value"}):
        ...     pass
        >>> assert tracer.span_names == ["operation"]
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        """Record span and yield None."""
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        """Returns True to enable attribute computation in tests."""
        return True

    @property
    def span_names(self) -> list[str]:
        """Get just the span names for easy assertions."""
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        """Clear recorded spans."""
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Create the appropriate tracer.

    Args:
        name: Tracer name (typically __name__)
        enable_tracing: Whether tracing should be enabled (default True)

    Returns:
        OpenTelemetryTracer if enabled and available, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "ATTR_TABLE",
    "ATTR_OFFSET",
    "ATTR_BATCH_SIZE",
    "ATTR_WRITE_MODE",
    "ATTR_SESSION_ID",
    "ATTR_SOURCE_TYPE",
    "ATTR_TARGET_TYPE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
