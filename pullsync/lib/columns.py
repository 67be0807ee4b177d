"""System column names shared by remote tables and the local store."""

from __future__ import annotations

__all__ = ["SystemColumns", "is_system_column"]


class SystemColumns:
    """Columns maintained by the remote table service on every row."""

    ID = "id"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    VERSION = "version"
    DELETED = "deleted"

    ALL = (ID, CREATED_AT, UPDATED_AT, VERSION, DELETED)


def is_system_column(name: str) -> bool:
    """Return True for the service-maintained columns (case-insensitive)."""
    return name.lower() in {c.lower() for c in SystemColumns.ALL}
