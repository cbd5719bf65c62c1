"""Error Hierarchy — typed, categorized exceptions plus the normalized failure record.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - ErrorDetails is the only shape in which transport failures travel past the classifier
    - RequestFailedError always chains the raw transport error as __cause__
    - No internal details leaked in user-facing messages (user_message is curated)

Design Decisions:
    - Single hierarchy with OptimisticError base: callers catch one type at the UI boundary
    - ErrorContext as dataclass: rich observability without coupling to logging framework
    - ErrorDetails frozen: one classification per failure occurrence, never patched afterwards
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from optimistic.core.domain_types import ErrorKind, RETRYABLE_KINDS


class ErrorSeverity(str, Enum):
    """Error severity for observability and notifier display."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    EXTERNAL_API = "external_api"
    AUTHENTICATION = "authentication"
    INTERNAL = "internal"


@dataclass(frozen=True)
class FieldError:
    """One field-level validation failure reported by the server."""
    field: str
    message: str
    value: Any = None


@dataclass(frozen=True)
class ErrorDetails:
    """Normalized view of a raw transport failure."""
    kind: ErrorKind
    user_message: str
    cause: BaseException | None = None
    status_code: int | None = None
    retry_after_ms: int | None = None
    code: str | None = None
    server_message: str | None = None
    field_errors: tuple[FieldError, ...] = ()
    severity: ErrorSeverity = ErrorSeverity.ERROR
    server_field: str | None = None
    server_data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    action_id: str | None = None
    method: str | None = None
    resource: str | None = None
    attempts: int | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class OptimisticError(Exception):
    """Base exception for all errors raised by this package."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to the error envelope the UI layer renders."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "action_id": self.context.action_id,
                    "method": self.context.method,
                    "resource": self.context.resource,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Local Errors ───────────────────────────────────────────────

class NotFoundError(OptimisticError):
    """Referenced entity or ledger entry does not exist."""
    def __init__(
        self, resource_type: str, resource_id: object, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.WARNING, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidTransitionError(OptimisticError):
    """PendingAction asked to leave a terminal status."""
    def __init__(self, action_id: str, current: str, requested: str):
        super().__init__(
            f"Action {action_id} is already {current}; cannot move to {requested}",
            "INVALID_TRANSITION", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, None, 500,
        )


# ─── Transport Errors ───────────────────────────────────────────

_CATEGORY_BY_KIND = {
    ErrorKind.UNAUTHORIZED: ErrorCategory.AUTHENTICATION,
    ErrorKind.VALIDATION: ErrorCategory.VALIDATION,
}


class RequestFailedError(OptimisticError):
    """Server call failed terminally (retries exhausted or not retryable)."""
    def __init__(self, details: ErrorDetails, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.user_message = details.user_message
        ctx.retry_after_ms = details.retry_after_ms
        super().__init__(
            f"Request failed ({details.kind.value}): "
            f"{details.server_message or details.user_message}",
            f"REQUEST_{details.kind.name}",
            _CATEGORY_BY_KIND.get(details.kind, ErrorCategory.EXTERNAL_API),
            details.severity, ctx, details.status_code or 502,
        )
        self.details = details

    @property
    def kind(self) -> ErrorKind:
        return self.details.kind


class SessionExpiredError(RequestFailedError):
    """Unauthorized response; credentials were already cleared."""


class CommandAbortedError(OptimisticError):
    """A ledger step's store call rolled back without raising (session expired)."""
    def __init__(self, description: str, context: ErrorContext | None = None):
        super().__init__(
            f"{description} was rolled back before it could take effect",
            "COMMAND_ABORTED", ErrorCategory.AUTHENTICATION,
            ErrorSeverity.WARNING, context, 401,
        )
