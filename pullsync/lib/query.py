"""Immutable table queries and filter predicates.

A ``Query`` bundles a filter predicate, ordering, paging and the flags the
remote table understands. Queries are frozen: every "mutator" returns a new
query, so a query captured at the start of a pull can be rewritten per page
without being changed under the caller.

Example:
    from pullsync.lib.query import Query, QueryOrder, field

    query = (
        Query(table_name="todoitem")
        .where(field("complete").eq(False))
        .order_by_field("text", QueryOrder.ASCENDING)
        .with_top(100)
    )
    params = query.to_odata_params()
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field as dataclass_field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pullsync.lib.columns import SystemColumns
from pullsync.lib.dates import format_timestamp, parse_timestamp
from pullsync.lib.errors import CursorParseError

__all__ = [
    "BinaryOperator",
    "ComparisonNode",
    "FieldRef",
    "LogicalNode",
    "LogicalOperator",
    "NotNode",
    "OrderBy",
    "Query",
    "QueryNode",
    "QueryOrder",
    "field",
    "table_name",
]


class QueryOrder(Enum):
    """Sort direction."""

    ASCENDING = "asc"
    DESCENDING = "desc"


@dataclass(frozen=True)
class OrderBy:
    """A single ordering directive."""

    field: str
    order: QueryOrder = QueryOrder.ASCENDING


class BinaryOperator(Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


class LogicalOperator(Enum):
    AND = "and"
    OR = "or"


def _odata_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return f"datetimeoffset'{format_timestamp(value)}'"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def _compare(left: Any, operator: BinaryOperator, right: Any) -> bool:
    if isinstance(right, datetime) and left is not None:
        try:
            left = parse_timestamp(left)
        except CursorParseError:
            return False

    if left is None or right is None:
        if operator == BinaryOperator.EQ:
            return left is right
        if operator == BinaryOperator.NE:
            return left is not right
        return False

    try:
        if operator == BinaryOperator.EQ:
            return bool(left == right)
        if operator == BinaryOperator.NE:
            return bool(left != right)
        if operator == BinaryOperator.GT:
            return bool(left > right)
        if operator == BinaryOperator.GE:
            return bool(left >= right)
        if operator == BinaryOperator.LT:
            return bool(left < right)
        return bool(left <= right)
    except TypeError:
        return False


class QueryNode(ABC):
    """Base class for filter predicates."""

    @abstractmethod
    def matches(self, row: Dict[str, Any]) -> bool:
        """Evaluate the predicate against a single row."""
        ...

    @abstractmethod
    def to_odata(self) -> str:
        """Render the predicate as an OData $filter expression."""
        ...

    def and_(self, other: "QueryNode") -> "LogicalNode":
        return LogicalNode(LogicalOperator.AND, self, other)

    def or_(self, other: "QueryNode") -> "LogicalNode":
        return LogicalNode(LogicalOperator.OR, self, other)

    def __and__(self, other: "QueryNode") -> "LogicalNode":
        return self.and_(other)

    def __or__(self, other: "QueryNode") -> "LogicalNode":
        return self.or_(other)

    def __invert__(self) -> "NotNode":
        return NotNode(self)


@dataclass(frozen=True)
class ComparisonNode(QueryNode):
    """``field <operator> value``."""

    field: str
    operator: BinaryOperator
    value: Any

    def matches(self, row: Dict[str, Any]) -> bool:
        return _compare(row.get(self.field), self.operator, self.value)

    def to_odata(self) -> str:
        return f"({self.field} {self.operator.value} {_odata_literal(self.value)})"


@dataclass(frozen=True)
class LogicalNode(QueryNode):
    """Conjunction or disjunction of two predicates."""

    operator: LogicalOperator
    left: QueryNode
    right: QueryNode

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.operator == LogicalOperator.AND:
            return self.left.matches(row) and self.right.matches(row)
        return self.left.matches(row) or self.right.matches(row)

    def to_odata(self) -> str:
        return f"({self.left.to_odata()} {self.operator.value} {self.right.to_odata()})"


@dataclass(frozen=True)
class NotNode(QueryNode):
    operand: QueryNode

    def matches(self, row: Dict[str, Any]) -> bool:
        return not self.operand.matches(row)

    def to_odata(self) -> str:
        return f"not{self.operand.to_odata()}"


@dataclass(frozen=True)
class FieldRef:
    """Entry point for building comparisons on a column."""

    name: str

    def _node(self, operator: BinaryOperator, value: Any) -> ComparisonNode:
        return ComparisonNode(self.name, operator, value)

    def eq(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.EQ, value)

    def ne(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.NE, value)

    def gt(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.GT, value)

    def ge(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.GE, value)

    def lt(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.LT, value)

    def le(self, value: Any) -> ComparisonNode:
        return self._node(BinaryOperator.LE, value)

    greater_or_equal = ge


def field(name: str) -> FieldRef:
    """Start a predicate on the given column."""
    return FieldRef(name)


def _sort_key(value: Any) -> Tuple[int, Any]:
    # None sorts first in ascending order
    if value is None:
        return (0, 0)
    return (1, value)


@dataclass(frozen=True)
class Query:
    """Immutable description of a table query.

    ``top == 0`` means "no page size requested".
    """

    table_name: Optional[str] = None
    predicate: Optional[QueryNode] = None
    order_by: Tuple[OrderBy, ...] = ()
    top: int = 0
    skip: int = 0
    include_deleted: bool = False
    include_inline_count: bool = False
    projection: Tuple[str, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.top < 0:
            raise ValueError(f"top must be >= 0, got {self.top}")
        if self.skip < 0:
            raise ValueError(f"skip must be >= 0, got {self.skip}")
        object.__setattr__(self, "order_by", tuple(self.order_by))
        object.__setattr__(self, "projection", tuple(self.projection))

    def deep_clone(self) -> "Query":
        return copy.deepcopy(self)

    def with_table_name(self, name: Optional[str]) -> "Query":
        return replace(self, table_name=name)

    def with_predicate(self, predicate: Optional[QueryNode]) -> "Query":
        return replace(self, predicate=predicate)

    def where(self, predicate: QueryNode) -> "Query":
        """Add a predicate, conjoined with any existing one."""
        if self.predicate is None:
            return replace(self, predicate=predicate)
        return replace(self, predicate=self.predicate.and_(predicate))

    def and_(self, other: Union["Query", QueryNode]) -> "Query":
        """Conjoin this query's predicate with another query or predicate."""
        if isinstance(other, QueryNode):
            return self.where(other)
        combined = self.where(other.predicate) if other.predicate is not None else self
        if not combined.table_name and other.table_name:
            combined = combined.with_table_name(other.table_name)
        return combined

    def with_top(self, top: int) -> "Query":
        return replace(self, top=top)

    def with_skip(self, skip: int) -> "Query":
        return replace(self, skip=skip)

    def order_by_field(
        self, name: str, order: QueryOrder = QueryOrder.ASCENDING
    ) -> "Query":
        return replace(self, order_by=self.order_by + (OrderBy(name, order),))

    def without_ordering(self) -> "Query":
        return replace(self, order_by=())

    def including_deleted(self) -> "Query":
        return replace(self, include_deleted=True)

    def with_inline_count(self) -> "Query":
        return replace(self, include_inline_count=True)

    def without_inline_count(self) -> "Query":
        return replace(self, include_inline_count=False)

    def select(self, *fields: str) -> "Query":
        return replace(self, projection=tuple(fields))

    def without_projection(self) -> "Query":
        return replace(self, projection=())

    def apply(self, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Evaluate the query against in-memory rows.

        Applies the deleted filter, predicate, ordering, skip, top and
        projection, in that order. Returned rows are copies.
        """
        result = [
            dict(row)
            for row in rows
            if self.include_deleted or not row.get(SystemColumns.DELETED)
        ]

        if self.predicate is not None:
            result = [row for row in result if self.predicate.matches(row)]

        # Stable sorts applied from the least significant key
        for order in reversed(self.order_by):
            result.sort(
                key=lambda row, name=order.field: _sort_key(row.get(name)),
                reverse=order.order == QueryOrder.DESCENDING,
            )

        if self.skip:
            result = result[self.skip:]
        if self.top:
            result = result[: self.top]

        if self.projection:
            result = [
                {name: row[name] for name in self.projection if name in row}
                for row in result
            ]

        return result

    def to_odata_params(self) -> Dict[str, str]:
        """Build the query string parameters for the remote table endpoint."""
        params: Dict[str, str] = {}

        if self.predicate is not None:
            params["$filter"] = self.predicate.to_odata()
        if self.order_by:
            params["$orderby"] = ",".join(
                f"{o.field} {o.order.value}" for o in self.order_by
            )
        if self.top:
            params["$top"] = str(self.top)
        if self.skip:
            params["$skip"] = str(self.skip)
        if self.include_inline_count:
            params["$inlinecount"] = "allpages"
        if self.projection:
            params["$select"] = ",".join(self.projection)
        if self.include_deleted:
            params["__includeDeleted"] = "true"

        return params


def table_name(name: str) -> Query:
    """Start an empty query bound to a table."""
    return Query(table_name=name)
