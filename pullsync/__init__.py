"""Incremental pulls of remote tables into a local store.

Usage:
    from pullsync import MemoryLocalStore, Query, initialize_store, pull

    store = MemoryLocalStore()
    initialize_store(store)
    store.define_table("todoitem", {"id": ColumnDataType.STRING})
    result = pull("todoitem", Query(), reader, store, query_id="all")
"""

from pullsync.lib.incremental import IncrementalPullStrategy
from pullsync.lib.pull import PullResult, pull
from pullsync.lib.query import Query, QueryOrder, field
from pullsync.lib.store import ColumnDataType, JsonFileLocalStore, MemoryLocalStore
from pullsync.lib.watermark import initialize_store

__version__ = "1.0.0"

__all__ = [
    "ColumnDataType",
    "IncrementalPullStrategy",
    "JsonFileLocalStore",
    "MemoryLocalStore",
    "PullResult",
    "Query",
    "QueryOrder",
    "field",
    "initialize_store",
    "pull",
]
