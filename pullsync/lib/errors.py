"""Structured exception hierarchy for table pulls.

Provides specific exception types for the failure modes of a pull session,
with table / query context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "SyncError",
    "LocalStoreError",
    "CursorParseError",
    "SyncInitializationError",
    "RemoteReadError",
    "ConfigurationError",
]


class SyncError(Exception):
    """Base exception for all pull errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        query_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.table = table
        self.query_id = query_id
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if table or query_id:
            context = f"{table or '?'}/{query_id or '?'}"
            parts.insert(0, f"[{context}]")

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "table": self.table,
            "query_id": self.query_id,
            "details": self.details,
            "suggestion": self.suggestion,
        }


def _cause_details(details: Dict[str, Any], cause: Optional[BaseException]) -> None:
    if cause is not None:
        details["cause"] = str(cause)
        details["cause_type"] = type(cause).__name__


class LocalStoreError(SyncError):
    """Error reading from or writing to the local store."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        store_table: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.operation = operation
        self.store_table = store_table
        self.cause = cause

        details = kwargs.pop("details", None) or {}
        if operation:
            details["operation"] = operation
        if store_table:
            details["store_table"] = store_table
        _cause_details(details, cause)

        super().__init__(message, details=details, **kwargs)


class CursorParseError(SyncError, ValueError):
    """A stored or received updatedAt value is not a valid timestamp."""

    def __init__(self, message: str, *, value: Any = None, **kwargs: Any) -> None:
        self.value = value

        details = kwargs.pop("details", None) or {}
        details["value"] = repr(value)

        super().__init__(message, details=details, **kwargs)


class SyncInitializationError(SyncError):
    """The pull session could not be initialized.

    Fatal: callers must not continue the session.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.cause = cause

        details = kwargs.pop("details", None) or {}
        _cause_details(details, cause)

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "The previously committed cursor is untouched. Fix the local "
                "store and restart the pull."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class RemoteReadError(SyncError):
    """Error executing a query against the remote table."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.cause = cause

        details = kwargs.pop("details", None) or {}
        if url:
            details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code
        _cause_details(details, cause)

        super().__init__(message, details=details, **kwargs)


class ConfigurationError(SyncError):
    """Invalid or incomplete pull configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)
