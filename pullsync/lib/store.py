"""Local stores for pulled rows and sync state.

Two backends share the ``LocalStore`` interface:

- ``MemoryLocalStore``: dict-backed, for tests and short-lived sessions
- ``JsonFileLocalStore``: one JSON document per table in a state directory

Rows are keyed by their ``id`` column; ``upsert`` is last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pullsync.lib.columns import SystemColumns
from pullsync.lib.errors import LocalStoreError
from pullsync.lib.query import Query

logger = logging.getLogger(__name__)

__all__ = [
    "ColumnDataType",
    "DEFAULT_STATE_DIR",
    "JsonFileLocalStore",
    "LocalStore",
    "MemoryLocalStore",
]

# Default state directory - can be overridden via environment variable
DEFAULT_STATE_DIR = ".state"

Record = Dict[str, Any]
Records = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


class ColumnDataType(Enum):
    """Column types understood by local stores."""

    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    DATE = "date"
    OTHER = "other"


def _as_records(records: Records) -> List[Record]:
    if isinstance(records, Mapping):
        return [dict(records)]
    return [dict(record) for record in records]


def _record_id(table: str, record: Mapping[str, Any]) -> str:
    record_id = record.get(SystemColumns.ID)
    if record_id is None or record_id == "":
        raise LocalStoreError(
            "Record has no id",
            operation="upsert",
            store_table=table,
            details={"record_keys": sorted(record)},
        )
    return str(record_id)


class LocalStore(ABC):
    """Persistent key/value table store used by pulls.

    Subclasses keep a ``{table: {id: record}}`` mapping; reads evaluate a
    ``Query`` against the table's rows.
    """

    @abstractmethod
    def define_table(self, name: str, columns: Mapping[str, ColumnDataType]) -> None:
        """Create a table, or extend its column set. Idempotent."""
        ...

    @abstractmethod
    def _load_rows(self, table: str) -> Dict[str, Record]:
        ...

    @abstractmethod
    def _store_rows(self, table: str, rows: Dict[str, Record]) -> None:
        ...

    def read(self, query: Query) -> List[Record]:
        """Return the rows of ``query.table_name`` matching the query."""
        if not query.table_name:
            raise LocalStoreError("Query has no table name", operation="read")
        rows = self._load_rows(query.table_name)
        return query.apply(rows.values())

    def lookup(self, table: str, record_id: str) -> Optional[Record]:
        row = self._load_rows(table).get(str(record_id))
        return dict(row) if row is not None else None

    def upsert(
        self,
        table: str,
        records: Records,
        use_soft_deletes: bool = False,
    ) -> None:
        """Insert or replace records by id.

        With ``use_soft_deletes=False`` records flagged as deleted remove the
        stored row; otherwise they are kept as tombstones.
        """
        rows = self._load_rows(table)
        for record in _as_records(records):
            record_id = _record_id(table, record)
            if record.get(SystemColumns.DELETED) and not use_soft_deletes:
                rows.pop(record_id, None)
            else:
                rows[record_id] = record
        self._store_rows(table, rows)

    def delete(self, table: str, ids: Iterable[str]) -> int:
        """Delete rows by id. Returns how many rows existed."""
        rows = self._load_rows(table)
        removed = 0
        for record_id in ids:
            if rows.pop(str(record_id), None) is not None:
                removed += 1
        self._store_rows(table, rows)
        return removed


class MemoryLocalStore(LocalStore):
    """Dict-backed store."""

    def __init__(self) -> None:
        self._columns: Dict[str, Dict[str, ColumnDataType]] = {}
        self._tables: Dict[str, Dict[str, Record]] = {}

    def define_table(self, name: str, columns: Mapping[str, ColumnDataType]) -> None:
        self._columns.setdefault(name, {}).update(columns)
        self._tables.setdefault(name, {})

    def columns(self, name: str) -> Dict[str, ColumnDataType]:
        return dict(self._columns.get(name, {}))

    def _load_rows(self, table: str) -> Dict[str, Record]:
        if table not in self._tables:
            raise LocalStoreError(
                f"Table '{table}' is not defined",
                store_table=table,
                suggestion="Call define_table() before reading or writing.",
            )
        return dict(self._tables[table])

    def _store_rows(self, table: str, rows: Dict[str, Record]) -> None:
        self._tables[table] = rows


class JsonFileLocalStore(LocalStore):
    """Store each table as ``<state_dir>/<table>.json``.

    Document layout::

        {"columns": {"id": "string", ...}, "rows": {"<id>": {...}, ...}}

    Writes go to a temporary file that replaces the document, so a crash
    never leaves a half-written table behind.
    """

    def __init__(self, state_dir: Optional[Union[str, Path]] = None) -> None:
        if state_dir is None:
            state_dir = os.environ.get("PULLSYNC_STATE_DIR", DEFAULT_STATE_DIR)
        self.state_dir = Path(state_dir)

    def _table_path(self, table: str) -> Path:
        return self.state_dir / f"{table}.json"

    def _read_document(self, table: str) -> Dict[str, Any]:
        path = self._table_path(table)
        if not path.exists():
            raise LocalStoreError(
                f"Table '{table}' is not defined",
                store_table=table,
                details={"path": str(path)},
                suggestion="Call define_table() before reading or writing.",
            )
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LocalStoreError(
                f"Could not read table file for '{table}'",
                operation="read",
                store_table=table,
                cause=exc,
                details={"path": str(path)},
            ) from exc

    def _write_document(self, table: str, document: Dict[str, Any]) -> None:
        path = self._table_path(table)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.state_dir), prefix=f".{table}.", suffix=".tmp"
            )
        except OSError as exc:
            raise self._write_error(table, path, exc) from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, default=str)
            os.replace(tmp_name, path)
        except (OSError, ValueError) as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_name)
            raise self._write_error(table, path, exc) from exc
        logger.debug("Wrote %d rows to %s", len(document.get("rows", {})), path)

    def _write_error(self, table: str, path: Path, exc: Exception) -> LocalStoreError:
        return LocalStoreError(
            f"Could not write table file for '{table}'",
            operation="write",
            store_table=table,
            cause=exc,
            details={"path": str(path)},
        )

    def define_table(self, name: str, columns: Mapping[str, ColumnDataType]) -> None:
        path = self._table_path(name)
        document: Dict[str, Any] = {"columns": {}, "rows": {}}
        if path.exists():
            document = self._read_document(name)
        document.setdefault("columns", {}).update(
            {column: data_type.value for column, data_type in columns.items()}
        )
        document.setdefault("rows", {})
        self._write_document(name, document)

    def _load_rows(self, table: str) -> Dict[str, Record]:
        return dict(self._read_document(table).get("rows", {}))

    def _store_rows(self, table: str, rows: Dict[str, Record]) -> None:
        document = self._read_document(table)
        document["rows"] = rows
        self._write_document(table, document)
