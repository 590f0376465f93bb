"""
Shared test fixtures for the tablemigrator library.

This module provides reusable test doubles:
- Row factory (make_rows)
- Provider doubles (RecordingSourceProvider, FlakyTargetProvider, StaticProviderFactory)
- Observation doubles (RecordingRenderer, RecordingCheckpointStore)

Usage:
    from tests.fixtures import (
        FlakyTargetProvider,
        RecordingCheckpointStore,
        RecordingRenderer,
        make_rows,
    )
"""

from tests.fixtures.providers import (
    FlakyTargetProvider,
    RecordingSourceProvider,
    StaticProviderFactory,
    make_rows,
)
from tests.fixtures.recording import RecordingCheckpointStore, RecordingRenderer

__all__ = [
    "make_rows",
    "RecordingSourceProvider",
    "FlakyTargetProvider",
    "StaticProviderFactory",
    "RecordingRenderer",
    "RecordingCheckpointStore",
]
