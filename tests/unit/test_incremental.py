"""Tests for the incremental (watermark-chasing) pull strategy.

Tests cover:
- Query rewrite: deleted rows, ordering, cursor filter, page size clamp
- Watermark commits per page, including the empty-page step past the bucket
- Continuation: requery on watermark advance, offset paging inside a bucket
- Fatal store failures and malformed stored cursors
"""

from unittest.mock import patch

import pytest

from pullsync.lib.dates import parse_timestamp
from pullsync.lib.errors import (
    CursorParseError,
    LocalStoreError,
    SyncError,
    SyncInitializationError,
)
from pullsync.lib.incremental import IncrementalPullStrategy, rewrite_query
from pullsync.lib.query import (
    LogicalNode,
    LogicalOperator,
    OrderBy,
    Query,
    QueryOrder,
    field,
)
from pullsync.lib.store import MemoryLocalStore
from pullsync.lib.watermark import WatermarkStore
from tests.fakes import TABLE, make_row, ts

UPDATED_AT_ASC = (OrderBy("updatedAt", QueryOrder.ASCENDING),)


def _strategy(store, query=None, query_id="all", **kwargs):
    return IncrementalPullStrategy(
        query or Query(table_name=TABLE), query_id, store, TABLE, **kwargs
    )


def _cursor(store, query_id="all"):
    return WatermarkStore(store).read_cursor(TABLE, query_id)


def _seed_cursor(store, value, query_id="all"):
    WatermarkStore(store).save_cursor(TABLE, query_id, value)


# ============================================================================
# rewrite_query
# ============================================================================


class TestRewriteQuery:
    """Tests for the pure page-query rewrite."""

    def test_no_cursor_adds_no_filter(self):
        """Without a watermark the caller's predicate is kept as-is."""
        original = Query(table_name=TABLE, predicate=field("category").eq("x"))
        query = rewrite_query(original, None)

        assert query.predicate == field("category").eq("x")
        assert query.order_by == UPDATED_AT_ASC
        assert query.top == 50

    def test_cursor_becomes_predicate_when_none_exists(self):
        """Cursor filter is the whole predicate when the caller has none."""
        cursor = parse_timestamp(ts(5))
        query = rewrite_query(Query(table_name=TABLE, top=20), cursor)

        assert query.predicate == field("updatedAt").ge(cursor)
        assert query.top == 20
        assert query.table_name == TABLE

    def test_cursor_is_conjoined_with_existing_predicate(self):
        """Cursor filter is ANDed with the caller's filter."""
        cursor = parse_timestamp(ts(5))
        original = Query(table_name=TABLE, predicate=field("category").eq("x"))

        query = rewrite_query(original, cursor)

        assert query.predicate == LogicalNode(
            LogicalOperator.AND,
            field("category").eq("x"),
            field("updatedAt").ge(cursor),
        )

    @pytest.mark.parametrize(
        "order_by",
        [
            (),
            (OrderBy("text", QueryOrder.DESCENDING),),
            (OrderBy("updatedAt", QueryOrder.DESCENDING), OrderBy("id")),
        ],
    )
    def test_ordering_is_always_updated_at_ascending(self, order_by):
        """Whatever the caller asked for, pages come back oldest first."""
        original = Query(table_name=TABLE, order_by=order_by)

        for cursor in (None, parse_timestamp(ts(1))):
            query = rewrite_query(original, cursor)
            assert query.order_by == UPDATED_AT_ASC

    @pytest.mark.parametrize(
        "requested,expected",
        [(0, 50), (50, 50), (1000, 1000), (1001, 1000)],
    )
    def test_page_size_clamp(self, requested, expected):
        """0 and default map to default; max and max+1 map to max."""
        original = Query(table_name=TABLE, top=requested)

        assert rewrite_query(original, None).top == expected
        assert rewrite_query(original, parse_timestamp(ts(1))).top == expected

    def test_custom_page_sizes(self):
        """Default and maximum page size are configurable."""
        assert rewrite_query(Query(), None, default_page_size=10).top == 10
        assert rewrite_query(Query(top=500), None, max_page_size=100).top == 100

    def test_original_is_not_modified(self):
        """The rewrite returns a new query."""
        original = Query(table_name=TABLE, order_by=(OrderBy("text"),))
        rewrite_query(original, parse_timestamp(ts(1)))

        assert original.predicate is None
        assert original.order_by == (OrderBy("text"),)
        assert original.top == 0

    @pytest.mark.parametrize("cursor", [None, parse_timestamp(ts(5))])
    def test_caller_skip_is_dropped(self, cursor):
        """Every rewrite starts at the first row past the watermark."""
        query = rewrite_query(Query(table_name=TABLE, skip=7, top=1), cursor)

        assert query.skip == 0
        assert query.top == 1


# ============================================================================
# initialize
# ============================================================================


class TestInitialize:
    """Tests for IncrementalPullStrategy.initialize."""

    def test_first_pull_has_no_lower_bound(self, store):
        """No stored cursor: no updatedAt filter, default page size."""
        strategy = _strategy(store)
        strategy.initialize()

        assert strategy.max_updated_at is None
        assert strategy.delta_token is None
        assert strategy.query.predicate is None
        assert strategy.query.order_by == UPDATED_AT_ASC
        assert strategy.query.top == 50

    def test_forces_deleted_and_strips_count_and_projection(self, store):
        """Rows must have a predictable shape and include tombstones."""
        query = Query(
            table_name=TABLE,
            include_inline_count=True,
            projection=("id", "text"),
        )
        strategy = _strategy(store, query)
        strategy.initialize()

        assert strategy.query.include_deleted is True
        assert strategy.query.include_inline_count is False
        assert strategy.query.projection == ()
        assert strategy.original_query.include_deleted is True

    def test_caller_query_is_untouched(self, store):
        """The caller keeps their own query object unchanged."""
        query = Query(table_name=TABLE, include_inline_count=True)
        strategy = _strategy(store, query)
        strategy.initialize()

        assert query.include_inline_count is True
        assert query.include_deleted is False

    def test_resumes_from_stored_cursor(self, store):
        """Stored cursor becomes both watermark and delta token."""
        _seed_cursor(store, ts(5))
        strategy = _strategy(store)
        strategy.initialize()

        expected = parse_timestamp(ts(5))
        assert strategy.max_updated_at == expected
        assert strategy.delta_token == expected
        assert strategy.query.predicate == field("updatedAt").ge(expected)

    def test_cursor_is_scoped_to_query_id(self, store):
        """A cursor stored for another query id is ignored."""
        _seed_cursor(store, ts(5), query_id="other")
        strategy = _strategy(store, query_id="all")
        strategy.initialize()

        assert strategy.max_updated_at is None

    def test_has_previous_results_reset(self, store):
        """has_previous_results starts True and is cleared by initialize."""
        strategy = _strategy(store)
        assert strategy.has_previous_results is True

        strategy.initialize()
        assert strategy.has_previous_results is False

    def test_store_read_failure_is_fatal(self):
        """A store without the watermark table cannot initialize."""
        strategy = _strategy(MemoryLocalStore())

        with pytest.raises(SyncInitializationError) as exc_info:
            strategy.initialize()

        assert isinstance(exc_info.value.cause, LocalStoreError)
        assert exc_info.value.table == TABLE
        assert exc_info.value.query_id == "all"

    def test_malformed_cursor_fails_session(self, store):
        """An unparseable stored cursor is reported, not silently reset."""
        _seed_cursor(store, "not-a-timestamp")
        strategy = _strategy(store)

        with pytest.raises(SyncInitializationError) as exc_info:
            strategy.initialize()

        assert isinstance(exc_info.value.cause, CursorParseError)
        assert _cursor(store) == "not-a-timestamp"


# ============================================================================
# on_results_processed
# ============================================================================


class TestOnResultsProcessed:
    """Tests for watermark commits after each page."""

    def test_commits_last_row_updated_at_verbatim(self, store):
        """The last row's updatedAt string is stored unchanged."""
        strategy = _strategy(store)
        strategy.initialize()

        last = "2025-01-15T12:00:03.123+02:00"
        strategy.on_results_processed(
            [make_row("a", ts(1)), make_row("b", ts(2)), make_row("c", last)]
        )

        assert _cursor(store) == last
        assert strategy.max_updated_at == parse_timestamp(last)
        assert strategy.has_previous_results is True

    def test_tombstone_advances_watermark(self, store):
        """Deleted rows move the watermark like live rows."""
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed(
            [make_row("a", ts(1)), make_row("b", ts(4), deleted=True)]
        )

        assert _cursor(store) == ts(4)

    def test_empty_page_after_results_steps_one_millisecond(self, store):
        """Drained source: cursor moves one minimal unit past the watermark."""
        _seed_cursor(store, ts(5))
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed([make_row("a", ts(6))])
        assert strategy.move_to_next_page(1) is True

        strategy.on_results_processed([])

        assert _cursor(store) == "2025-01-15T10:00:06.001Z"
        assert strategy.move_to_next_page(0) is False
        assert strategy.committed_cursor == "2025-01-15T10:00:06.001Z"

    def test_empty_page_without_previous_results_keeps_cursor(self, store):
        """Nothing new this session: the stored cursor is left alone."""
        _seed_cursor(store, ts(5))
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed([])

        assert _cursor(store) == ts(5)
        assert strategy.move_to_next_page(0) is False

    def test_empty_page_without_cursor_saves_nothing(self, store):
        """Empty table on first pull: no cursor record is created."""
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed([])

        assert _cursor(store) is None
        assert strategy.move_to_next_page(0) is False

    def test_watermark_never_regresses(self, store):
        """A page ending before the watermark does not lower the cursor."""
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed([make_row("a", ts(5))])
        strategy.on_results_processed([make_row("b", ts(3))])

        assert _cursor(store) == ts(5)
        assert strategy.max_updated_at == parse_timestamp(ts(5))

    def test_persisted_cursor_is_monotonic(self, store):
        """Across a session, every committed cursor is >= the previous one."""
        strategy = _strategy(store)
        strategy.initialize()

        committed = []
        pages = [
            [make_row("a", ts(1)), make_row("b", ts(2))],
            [make_row("c", ts(2))],
            [make_row("d", ts(1))],
            [make_row("e", ts(7))],
            [],
        ]
        for page in pages:
            strategy.on_results_processed(page)
            committed.append(parse_timestamp(_cursor(store)))

        assert committed == sorted(committed)

    def test_missing_updated_at_fails_fast(self, store):
        """Rows without updatedAt cannot advance a watermark."""
        strategy = _strategy(store)
        strategy.initialize()

        with pytest.raises(CursorParseError):
            strategy.on_results_processed([{"id": "a"}])

    def test_store_write_failure_propagates(self, store):
        """A failed commit surfaces and leaves the previous cursor intact."""
        _seed_cursor(store, ts(5))
        strategy = _strategy(store)
        strategy.initialize()

        with patch.object(store, "upsert", side_effect=OSError("disk full")):
            with pytest.raises(LocalStoreError) as exc_info:
                strategy.on_results_processed([make_row("a", ts(9))])

        assert isinstance(exc_info.value.cause, OSError)
        assert _cursor(store) == ts(5)


# ============================================================================
# move_to_next_page
# ============================================================================


class TestMoveToNextPage:
    """Tests for the continuation decision."""

    def test_first_page_requeries_from_new_watermark(self, store):
        """No delta token yet: requery anchored at the page's last row."""
        original = Query(table_name=TABLE, predicate=field("category").eq("x"))
        strategy = _strategy(store, original)
        strategy.initialize()

        assert strategy.query.predicate == field("category").eq("x")

        strategy.on_results_processed(
            [
                make_row("a", ts(1), category="x"),
                make_row("b", ts(2), category="x"),
                make_row("c", ts(3), category="x"),
            ]
        )
        assert _cursor(store) == ts(3)

        assert strategy.move_to_next_page(3) is True
        assert strategy.delta_token == parse_timestamp(ts(3))
        assert strategy.query.predicate == LogicalNode(
            LogicalOperator.AND,
            field("category").eq("x"),
            field("updatedAt").ge(parse_timestamp(ts(3))),
        )
        assert strategy.query.order_by == UPDATED_AT_ASC

    def test_advanced_watermark_requeries_even_for_short_page(self, store):
        """Watermark past the delta token: continue although the page was short."""
        _seed_cursor(store, ts(1))
        strategy = _strategy(store)
        strategy.initialize()

        strategy.on_results_processed([make_row("a", ts(1)), make_row("b", ts(2))])

        assert strategy.move_to_next_page(2) is True
        assert strategy.query.predicate == field("updatedAt").ge(parse_timestamp(ts(2)))
        assert strategy.query.skip == 0
        assert strategy.total_read == 0

    def test_no_delta_token_and_empty_page_stops(self, store):
        strategy = _strategy(store)
        strategy.initialize()
        strategy.on_results_processed([])

        assert strategy.move_to_next_page(0) is False

    def test_same_bucket_pages_by_offset(self, store):
        """Full page inside one timestamp bucket: skip forward."""
        _seed_cursor(store, ts(1))
        strategy = _strategy(store, Query(table_name=TABLE, top=2))
        strategy.initialize()

        strategy.on_results_processed([make_row("a", ts(1)), make_row("b", ts(1))])
        assert strategy.move_to_next_page(2) is True
        assert strategy.query.skip == 2
        assert strategy.total_read == 2

        strategy.on_results_processed([make_row("c", ts(1))])
        assert strategy.move_to_next_page(1) is False

    def test_rewrite_resets_offset(self, store):
        """Moving to a new watermark restarts skip and total read."""
        _seed_cursor(store, ts(1))
        strategy = _strategy(store, Query(table_name=TABLE, top=2))
        strategy.initialize()

        strategy.on_results_processed([make_row("a", ts(1)), make_row("b", ts(1))])
        strategy.move_to_next_page(2)
        strategy.on_results_processed([make_row("c", ts(1)), make_row("d", ts(3))])

        assert strategy.move_to_next_page(2) is True
        assert strategy.query.skip == 0
        assert strategy.total_read == 0

    def test_resume_reproduces_last_query(self, store):
        """A new session picks up exactly where the last one left off."""
        first = _strategy(store, Query(table_name=TABLE, predicate=field("category").eq("x")))
        first.initialize()
        first.on_results_processed([make_row("a", ts(1)), make_row("b", ts(4))])
        first.move_to_next_page(2)

        second = _strategy(store, Query(table_name=TABLE, predicate=field("category").eq("x")))
        second.initialize()

        assert second.query == first.query
        assert second.delta_token == first.delta_token

    def test_requires_initialize(self, store):
        strategy = _strategy(store)

        with pytest.raises(SyncError, match="before initialize") as exc_info:
            strategy.move_to_next_page(1)

        assert exc_info.value.table == TABLE

    def test_describe(self, store):
        strategy = _strategy(store)
        strategy.initialize()
        assert "beginning" in strategy.describe()

        strategy.on_results_processed([make_row("a", ts(2))])
        strategy.move_to_next_page(1)
        assert ts(2) in strategy.describe()
