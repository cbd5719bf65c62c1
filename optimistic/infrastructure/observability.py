"""Structured Logging — JSON formatter, setup, and a bounded log of classified failures.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - A record carrying `error_details` (ErrorDetails) is expanded into kind, status,
      code, retry hint, and field names; the raw cause is never serialized
    - Plain extra fields (action_id, method, resource, attempt, ...) surfaced when present
    - ErrorLog keeps at most `max_entries` entries; the oldest is dropped first

Design Decisions:
    - JSONFormatter on stdlib logging: the host application keeps control of handlers
    - setup_logging targets the package logger only, never the root logger
    - ErrorLog in memory only: the host decides whether to ship entries anywhere
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from optimistic.core.errors import ErrorDetails

_CONTEXT_FIELDS = (
    "action_id", "mutation_kind", "method", "resource", "attempt", "delay_ms", "status_code",
)


def error_fields(details: ErrorDetails) -> dict[str, Any]:
    """Loggable view of ErrorDetails, None values omitted."""
    fields = {
        "error_kind": details.kind.value,
        "severity": details.severity.value,
        "status_code": details.status_code,
        "error_code": details.code,
        "retry_after_ms": details.retry_after_ms,
        "field_errors": [fe.field for fe in details.field_errors] or None,
    }
    return {k: v for k, v in fields.items() if v is not None}


class JSONFormatter(logging.Formatter):
    """Format logs as JSON, expanding attached ErrorDetails."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        details = record.__dict__.get("error_details")
        if isinstance(details, ErrorDetails):
            log.update(error_fields(details))
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Attach one stream handler to the package logger and return it."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    package_logger = logging.getLogger("optimistic")
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler


# ─── Error log ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ErrorLogEntry:
    id: str
    details: ErrorDetails
    action: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorLog:
    """Most recent classified failures, for debugging panels and support reports."""

    def __init__(self, max_entries: int = 50):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: deque[ErrorLogEntry] = deque(maxlen=max_entries)

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def record(
        self, details: ErrorDetails, action: str | None = None, **context: Any,
    ) -> ErrorLogEntry:
        entry = ErrorLogEntry(
            id=f"err-{uuid4().hex[:12]}", details=details, action=action, context=context,
        )
        self._entries.append(entry)
        return entry

    def recent(self, count: int = 10) -> list[ErrorLogEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def to_records(self) -> list[dict[str, Any]]:
        """Entries as plain dicts, ready for JSON export."""
        return [
            {
                "id": e.id,
                "timestamp": e.timestamp.isoformat(),
                "action": e.action,
                "message": e.details.user_message,
                **error_fields(e.details),
                **e.context,
            }
            for e in self._entries
        ]
