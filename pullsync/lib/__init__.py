"""Pull library modules.

This package contains the query model, local stores, watermark persistence
and the pagination strategies used to pull remote tables incrementally.
"""

from pullsync.lib.columns import SystemColumns, is_system_column
from pullsync.lib.dates import (
    MINIMAL_TIME_UNIT,
    advance_timestamp,
    format_timestamp,
    parse_timestamp,
)
from pullsync.lib.errors import (
    ConfigurationError,
    CursorParseError,
    LocalStoreError,
    RemoteReadError,
    SyncError,
    SyncInitializationError,
)
from pullsync.lib.incremental import IncrementalPullStrategy, rewrite_query
from pullsync.lib.logging import JSONFormatter, SyncLogger, get_sync_logger, setup_logging
from pullsync.lib.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    OffsetPullStrategy,
    PullStrategy,
    normalize_top,
)
from pullsync.lib.pull import PullResult, pull, validate_query_id
from pullsync.lib.query import (
    OrderBy,
    Query,
    QueryNode,
    QueryOrder,
    field,
    table_name,
)
from pullsync.lib.reader import HttpTableReader, RemoteReader
from pullsync.lib.settings import PullSettings, build_reader, build_store, load_settings
from pullsync.lib.store import (
    ColumnDataType,
    JsonFileLocalStore,
    LocalStore,
    MemoryLocalStore,
)
from pullsync.lib.watermark import (
    INCREMENTAL_PULL_TABLE,
    WatermarkStore,
    cursor_key,
    initialize_store,
)

__all__ = [
    # Columns and timestamps
    "SystemColumns",
    "is_system_column",
    "MINIMAL_TIME_UNIT",
    "advance_timestamp",
    "format_timestamp",
    "parse_timestamp",
    # Errors
    "ConfigurationError",
    "CursorParseError",
    "LocalStoreError",
    "RemoteReadError",
    "SyncError",
    "SyncInitializationError",
    # Query
    "OrderBy",
    "Query",
    "QueryNode",
    "QueryOrder",
    "field",
    "table_name",
    # Stores
    "ColumnDataType",
    "JsonFileLocalStore",
    "LocalStore",
    "MemoryLocalStore",
    "INCREMENTAL_PULL_TABLE",
    "WatermarkStore",
    "cursor_key",
    "initialize_store",
    # Strategies
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "IncrementalPullStrategy",
    "OffsetPullStrategy",
    "PullStrategy",
    "normalize_top",
    "rewrite_query",
    # Driver
    "HttpTableReader",
    "RemoteReader",
    "PullResult",
    "pull",
    "validate_query_id",
    # Settings and logging
    "PullSettings",
    "build_reader",
    "build_store",
    "load_settings",
    "JSONFormatter",
    "SyncLogger",
    "get_sync_logger",
    "setup_logging",
]
