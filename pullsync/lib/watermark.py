"""Watermark persistence for incremental pulls.

Watermarks track the highest updatedAt value pulled for a given table and
query id, allowing pulls to resume from where they left off.

Watermarks are stored in the ``__incrementalPullData`` table of the local
store, one record per ``(table, query_id)`` pair::

    {"id": "<table>_<query_id>", "maxupdateddate": "2025-01-15T14:30:00.000Z"}
"""

from __future__ import annotations

import logging
from typing import Optional

from pullsync.lib.columns import SystemColumns
from pullsync.lib.errors import LocalStoreError
from pullsync.lib.query import field, table_name
from pullsync.lib.store import ColumnDataType, LocalStore

logger = logging.getLogger(__name__)

__all__ = [
    "INCREMENTAL_PULL_TABLE",
    "MAX_UPDATED_DATE_COLUMN",
    "WatermarkStore",
    "cursor_key",
    "initialize_store",
]

INCREMENTAL_PULL_TABLE = "__incrementalPullData"
MAX_UPDATED_DATE_COLUMN = "maxupdateddate"


def cursor_key(table: str, query_id: str) -> str:
    """Key of the watermark record for a table/query pair."""
    return f"{table}_{query_id}"


def initialize_store(store: LocalStore) -> None:
    """Define the watermark table. Call once per store lifetime.

    Example:
        >>> store = JsonFileLocalStore(".state")
        >>> initialize_store(store)
    """
    store.define_table(
        INCREMENTAL_PULL_TABLE,
        {
            SystemColumns.ID: ColumnDataType.STRING,
            MAX_UPDATED_DATE_COLUMN: ColumnDataType.STRING,
        },
    )


class WatermarkStore:
    """Read and write sync cursors in a local store."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def read_cursor(self, table: str, query_id: str) -> Optional[str]:
        """Get the stored watermark for a table/query pair.

        Returns:
            The stored timestamp string, or None if no pull has committed yet

        Raises:
            LocalStoreError: If the store cannot be read
        """
        key = cursor_key(table, query_id)
        query = table_name(INCREMENTAL_PULL_TABLE).where(field(SystemColumns.ID).eq(key))

        try:
            results = self.store.read(query)
        except (LocalStoreError, OSError) as exc:
            raise LocalStoreError(
                "Failed to read watermark",
                operation="read",
                store_table=INCREMENTAL_PULL_TABLE,
                cause=exc,
                table=table,
                query_id=query_id,
            ) from exc

        if not results:
            logger.debug("No watermark found for %s", key)
            return None

        value = results[0].get(MAX_UPDATED_DATE_COLUMN)
        logger.debug("Found watermark for %s: %s", key, value)
        return value

    def save_cursor(self, table: str, query_id: str, value: str) -> None:
        """Persist a new watermark, replacing any previous one.

        Raises:
            LocalStoreError: If the store cannot be written
        """
        key = cursor_key(table, query_id)
        record = {SystemColumns.ID: key, MAX_UPDATED_DATE_COLUMN: value}

        try:
            self.store.upsert(INCREMENTAL_PULL_TABLE, record, use_soft_deletes=False)
        except (LocalStoreError, OSError) as exc:
            raise LocalStoreError(
                "Failed to save watermark",
                operation="upsert",
                store_table=INCREMENTAL_PULL_TABLE,
                cause=exc,
                table=table,
                query_id=query_id,
            ) from exc

        logger.debug("Saved watermark for %s: %s", key, value)
