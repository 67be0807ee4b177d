"""Logging for pulls.

``SyncLogger`` stamps every record with the table and query id of the pull
that emitted it. ``JSONFormatter`` lifts those two fields to the top level of
each JSON line so log aggregators can group a session's records.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Tuple

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "SyncLogger",
    "get_sync_logger",
]

_CONTEXT_FIELDS = ("table", "query_id")

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "pullsync.lib.incremental", "message": "Committed watermark ...",
         "table": "todoitem", "query_id": "all"}
    """

    def __init__(self, exclude_fields: Optional[Iterable[str]] = None):
        super().__init__()
        self.exclude_fields = set(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in self.exclude_fields:
                continue
            if key in _CONTEXT_FIELDS:
                log_data[key] = value
            else:
                extra[key] = value
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SyncLogger(logging.LoggerAdapter):
    """Adapter that merges pull context into each record's ``extra``.

    Example:
        log = get_sync_logger(__name__)
        log.set_context(table="todoitem", query_id="incomplete")
        log.info("Resuming from %s", cursor)
    """

    def __init__(self, name: str, **context: Any):
        super().__init__(logging.getLogger(name), dict(context))

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra)

    def set_context(self, **kwargs: Any) -> None:
        self.extra.update(kwargs)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_sync_logger(name: str, **context: Any) -> SyncLogger:
    return SyncLogger(name, **context)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger for a pull run.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to also write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
