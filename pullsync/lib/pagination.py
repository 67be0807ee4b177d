"""Pagination strategies for table pulls.

A pull strategy owns the live query a pull driver executes and decides,
after each page, whether another page is needed:

    strategy.initialize()
    while True:
        rows = reader.read(strategy.query)
        ...  # persist rows
        strategy.on_results_processed(rows)
        if not strategy.move_to_next_page(len(rows)):
            break

``OffsetPullStrategy`` is the plain skip/top policy. The incremental
strategy in ``pullsync.lib.incremental`` delegates to it while it is still
inside one updatedAt bucket.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

from pullsync.lib.query import Query

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "OffsetPullStrategy",
    "PullStrategy",
    "normalize_top",
]

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000


def normalize_top(
    top: int,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> int:
    """Apply the default page size when unset, otherwise clamp to the max."""
    if not top:
        return default_page_size
    return min(top, max_page_size)


class PullStrategy(ABC):
    """Base class for pull pagination state machines."""

    @property
    @abstractmethod
    def query(self) -> Query:
        """The query to execute for the next page."""
        ...

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the first query. Called once per pull session."""
        ...

    @abstractmethod
    def on_results_processed(self, rows: Sequence[Dict[str, Any]]) -> None:
        """Record a page after its rows were persisted locally."""
        ...

    @abstractmethod
    def move_to_next_page(self, last_page_row_count: int) -> bool:
        """Advance to the next page.

        Returns:
            True if another page should be fetched
        """
        ...

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description of the current position, for logging."""
        ...


class OffsetPullStrategy(PullStrategy):
    """Skip/top pagination over a fixed query.

    Keeps fetching while pages come back full:
        $top=50&$skip=0
        $top=50&$skip=50
        ...
    """

    def __init__(
        self,
        query: Query,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._query = query
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.base_skip = query.skip
        self.total_read = 0

    @property
    def query(self) -> Query:
        return self._query

    def initialize(self) -> None:
        top = normalize_top(self._query.top, self.default_page_size, self.max_page_size)
        self._query = self._query.with_top(top)
        self.base_skip = self._query.skip
        self.total_read = 0

    def on_results_processed(self, rows: Sequence[Dict[str, Any]]) -> None:
        return None

    def move_to_next_page(self, last_page_row_count: int) -> bool:
        self.total_read += last_page_row_count

        if last_page_row_count == 0:
            return False
        if self._query.top and last_page_row_count < self._query.top:
            return False

        self._query = self._query.with_skip(self.base_skip + self.total_read)
        return True

    def describe(self) -> str:
        return f"at skip {self._query.skip} (read {self.total_read})"
