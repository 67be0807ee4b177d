"""Incremental pull strategy.

Pulls only rows changed since the last committed watermark. The watermark
is the highest ``updatedAt`` seen for a ``(table, query_id)`` pair and is
persisted after every processed page, so an interrupted pull resumes from
the last page that was stored locally.

Every page is fetched with a query rewritten from the caller's original:

- deleted rows included (tombstones advance the watermark like live rows)
- no inline count, no projection
- ``updatedAt >= watermark`` conjoined with the caller's filter
- ordered ascending by ``updatedAt``
- no skip: offset paging restarts at every new watermark

Rows sharing the boundary timestamp are fetched again by the next query.
The local store upserts by id, so this is harmless, and it is what keeps
rows with equal timestamps that straddle a page boundary from being lost.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from pullsync.lib.columns import SystemColumns
from pullsync.lib.dates import advance_timestamp, format_timestamp, parse_timestamp
from pullsync.lib.errors import (
    CursorParseError,
    LocalStoreError,
    SyncError,
    SyncInitializationError,
)
from pullsync.lib.logging import get_sync_logger
from pullsync.lib.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    OffsetPullStrategy,
    PullStrategy,
    normalize_top,
)
from pullsync.lib.query import Query, QueryOrder, field, table_name
from pullsync.lib.store import LocalStore
from pullsync.lib.watermark import WatermarkStore

__all__ = ["IncrementalPullStrategy", "rewrite_query"]


def rewrite_query(
    original: Query,
    max_updated_at: Optional[datetime],
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Query:
    """Build the page query for a watermark.

    Args:
        original: Query captured at initialization
        max_updated_at: Current watermark, or None before the first commit
        default_page_size: Page size used when the original sets none
        max_page_size: Upper bound for the page size

    Returns:
        A new query; ``original`` is left untouched
    """
    # A caller skip would drop rows past every new watermark for good
    query = original.deep_clone().without_ordering().with_skip(0)

    if max_updated_at is not None:
        cursor_filter = field(SystemColumns.UPDATED_AT).ge(max_updated_at)
        if query.table_name:
            filter_query = table_name(query.table_name).where(cursor_filter)
        else:
            filter_query = Query(predicate=cursor_filter)

        if query.predicate is not None:
            query = query.and_(filter_query)
        else:
            query = query.with_predicate(filter_query.predicate).with_top(original.top)

    query = query.with_top(normalize_top(query.top, default_page_size, max_page_size))

    return query.without_ordering().order_by_field(
        SystemColumns.UPDATED_AT, QueryOrder.ASCENDING
    )


class IncrementalPullStrategy(PullStrategy):
    """Watermark-chasing pagination for one table/query pair.

    One instance serves one pull session and is not thread-safe. Sessions
    against the same ``(table, query_id)`` must be serialized by the caller.
    """

    def __init__(
        self,
        query: Query,
        query_id: str,
        store: LocalStore,
        table_name: str,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.query_id = query_id
        self.table_name = table_name
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.watermarks = WatermarkStore(store)

        self.max_updated_at: Optional[datetime] = None
        self.delta_token: Optional[datetime] = None
        self.has_previous_results = True
        self.original_query: Optional[Query] = None
        self.committed_cursor: Optional[str] = None

        self._query = query
        self._pager = OffsetPullStrategy(
            query,
            default_page_size=default_page_size,
            max_page_size=max_page_size,
        )

        self._log = get_sync_logger(__name__, table=table_name, query_id=query_id)

    @property
    def query(self) -> Query:
        return self._pager.query

    @property
    def total_read(self) -> int:
        return self._pager.total_read

    def initialize(self) -> None:
        """Load the stored watermark and build the first page query.

        Raises:
            SyncInitializationError: If the watermark cannot be read or parsed
        """
        self._query = (
            self._query.including_deleted().without_inline_count().without_projection()
        )
        self.original_query = self._query
        self.has_previous_results = False

        try:
            stored = self.watermarks.read_cursor(self.table_name, self.query_id)
            self.committed_cursor = stored
            if stored is not None:
                self.max_updated_at = parse_timestamp(stored)
                self.delta_token = self.max_updated_at
        except (LocalStoreError, CursorParseError) as exc:
            raise SyncInitializationError(
                "Could not load the pull watermark",
                cause=exc,
                table=self.table_name,
                query_id=self.query_id,
            ) from exc

        if self.max_updated_at is None:
            self._log.info("No watermark stored; pulling from the beginning")
        else:
            self._log.info("Resuming pull from watermark %s", stored)

        self._setup_query(self.max_updated_at)

    def on_results_processed(self, rows: Sequence[Dict[str, Any]]) -> None:
        """Commit the watermark for a page whose rows are stored locally.

        Raises:
            LocalStoreError: If the watermark cannot be saved
        """
        if not rows:
            if self.max_updated_at is not None and self.has_previous_results:
                # Step past the boundary bucket once the source is drained
                self._save_max_updated_date(
                    format_timestamp(advance_timestamp(self.max_updated_at))
                )
            return

        self.has_previous_results = True

        last_updated_at = rows[-1].get(SystemColumns.UPDATED_AT)
        updated_at = parse_timestamp(last_updated_at)

        if self.max_updated_at is not None and updated_at < self.max_updated_at:
            self._log.warning(
                "Page ended at %s, before watermark %s; rows are not ordered by %s",
                last_updated_at,
                format_timestamp(self.max_updated_at),
                SystemColumns.UPDATED_AT,
            )
            return

        self.max_updated_at = updated_at

        if isinstance(last_updated_at, datetime):
            last_updated_at = format_timestamp(last_updated_at)
        self._save_max_updated_date(last_updated_at)

    def move_to_next_page(self, last_page_row_count: int) -> bool:
        if self.delta_token is None or (
            self.max_updated_at is not None and self.max_updated_at > self.delta_token
        ):
            if last_page_row_count == 0:
                return False

            self.delta_token = self.max_updated_at
            self._setup_query(self.max_updated_at)
            self._log.debug("Watermark advanced; requerying %s", self.describe())
            return True

        # Still inside one updatedAt bucket: page by offset
        return self._pager.move_to_next_page(last_page_row_count)

    def describe(self) -> str:
        if self.delta_token is None:
            return f"from the beginning, {self._pager.describe()}"
        return f"from {format_timestamp(self.delta_token)}, {self._pager.describe()}"

    def _save_max_updated_date(self, value: str) -> None:
        self.watermarks.save_cursor(self.table_name, self.query_id, value)
        self.committed_cursor = value
        self._log.debug("Committed watermark %s", value)

    def _setup_query(self, max_updated_at: Optional[datetime]) -> None:
        if self.original_query is None:
            raise SyncError(
                "Pull strategy used before initialize()",
                table=self.table_name,
                query_id=self.query_id,
            )
        query = rewrite_query(
            self.original_query,
            max_updated_at,
            self.default_page_size,
            self.max_page_size,
        )
        # Fresh pager: total read restarts with every rewrite
        self._pager = OffsetPullStrategy(
            query,
            default_page_size=self.default_page_size,
            max_page_size=self.max_page_size,
        )
