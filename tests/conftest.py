"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pullsync.lib.store import ColumnDataType, MemoryLocalStore  # noqa: E402
from pullsync.lib.watermark import initialize_store  # noqa: E402
from tests.fakes import TABLE, FakeRemoteTable  # noqa: E402


@pytest.fixture
def store() -> MemoryLocalStore:
    """Memory store with the watermark table and the synced table defined."""
    memory_store = MemoryLocalStore()
    initialize_store(memory_store)
    memory_store.define_table(
        TABLE,
        {
            "id": ColumnDataType.STRING,
            "updatedAt": ColumnDataType.DATE,
            "deleted": ColumnDataType.BOOLEAN,
            "text": ColumnDataType.STRING,
            "category": ColumnDataType.STRING,
        },
    )
    return memory_store


@pytest.fixture
def remote() -> FakeRemoteTable:
    """Empty in-memory remote table."""
    return FakeRemoteTable()
