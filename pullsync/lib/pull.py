"""Pull remote table rows into a local store.

Drives a ``PullStrategy`` page by page:

    read page -> store rows -> commit watermark -> decide next page

Rows are written to the local store before the strategy commits the
watermark, so a failure at any step leaves the last committed watermark
pointing at rows that are already stored.

Example:
    from pullsync.lib.pull import pull
    from pullsync.lib.query import Query, field

    result = pull(
        "todoitem",
        Query(table_name="todoitem").where(field("complete").eq(False)),
        reader,
        store,
        query_id="incomplete",
    )
    print(result)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from pullsync.lib.columns import SystemColumns
from pullsync.lib.errors import ConfigurationError
from pullsync.lib.incremental import IncrementalPullStrategy
from pullsync.lib.pagination import OffsetPullStrategy, PullStrategy
from pullsync.lib.query import Query
from pullsync.lib.reader import RemoteReader
from pullsync.lib.settings import PullSettings
from pullsync.lib.store import LocalStore

logger = logging.getLogger(__name__)

__all__ = ["PullResult", "pull", "validate_query_id"]

_QUERY_ID_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_\-]{0,24}$")


@dataclass
class PullResult:
    """Summary of one pull session."""

    table_name: str
    query_id: Optional[str]
    pages: int = 0
    rows_read: int = 0
    rows_upserted: int = 0
    rows_deleted: int = 0
    # Watermark as stored at the end of the session
    cursor: Optional[str] = None

    @property
    def incremental(self) -> bool:
        return self.query_id is not None

    def __str__(self) -> str:
        mode = f"incremental '{self.query_id}'" if self.incremental else "full"
        return (
            f"Pulled {self.rows_read} rows from {self.table_name} ({mode}) "
            f"in {self.pages} pages: {self.rows_upserted} upserted, "
            f"{self.rows_deleted} deleted"
        )


def validate_query_id(query_id: str) -> str:
    """Check that a query id is usable as part of a watermark key.

    Raises:
        ConfigurationError: If the id is empty, too long or has odd characters
    """
    if not query_id or not _QUERY_ID_PATTERN.match(query_id):
        raise ConfigurationError(
            "Invalid query id",
            field="query_id",
            value=query_id,
            suggestion=(
                "Use up to 25 letters, digits, '_' or '-', starting with a letter."
            ),
        )
    return query_id


def _build_strategy(
    table_name: str,
    query: Query,
    store: LocalStore,
    query_id: Optional[str],
    settings: PullSettings,
) -> PullStrategy:
    if query_id is None:
        return OffsetPullStrategy(
            query,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )
    return IncrementalPullStrategy(
        query,
        validate_query_id(query_id),
        store,
        table_name,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


def pull(
    table_name: str,
    query: Query,
    reader: RemoteReader,
    store: LocalStore,
    *,
    query_id: Optional[str] = None,
    settings: Optional[PullSettings] = None,
) -> PullResult:
    """Pull rows matching ``query`` from the remote table into ``store``.

    Args:
        table_name: Remote and local table name
        query: Rows to pull; its table name defaults to ``table_name``
        reader: Executes page queries against the remote table
        store: Local store; ``table_name`` and, for incremental pulls, the
            watermark table must already be defined
        query_id: Enables incremental pulls keyed by this id
        settings: Page sizes and tombstone handling

    Returns:
        PullResult summary

    Raises:
        SyncInitializationError: If the stored watermark cannot be loaded
        LocalStoreError: If rows or the watermark cannot be stored
        RemoteReadError: If the remote table cannot be read
    """
    settings = settings or PullSettings()
    if not query.table_name:
        query = query.with_table_name(table_name)

    strategy = _build_strategy(table_name, query, store, query_id, settings)
    strategy.initialize()

    result = PullResult(table_name=table_name, query_id=query_id)
    logger.info("Starting pull of %s %s", table_name, strategy.describe())

    while True:
        rows = reader.read(strategy.query)
        result.pages += 1
        result.rows_read += len(rows)

        deleted = sum(1 for row in rows if row.get(SystemColumns.DELETED))
        if rows:
            store.upsert(table_name, rows, use_soft_deletes=settings.keep_tombstones)
        result.rows_deleted += deleted
        result.rows_upserted += len(rows) - deleted

        strategy.on_results_processed(rows)

        if not strategy.move_to_next_page(len(rows)):
            break
        logger.debug("Fetching next page of %s %s", table_name, strategy.describe())

    if isinstance(strategy, IncrementalPullStrategy):
        result.cursor = strategy.committed_cursor

    logger.info("%s", result)
    return result
