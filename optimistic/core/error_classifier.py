"""Error Classifier — total normalization of raw transport failures into ErrorDetails.

Invariants:
    - parse() never raises: every input maps to exactly one ErrorKind
    - 401 → UNAUTHORIZED, 429 → RATE_LIMITED, 503 → SERVICE_UNAVAILABLE,
      other 4xx → VALIDATION, no response / timeout → NETWORK, anything else → UNKNOWN
    - retry_after_ms only populated for RATE_LIMITED, always in milliseconds, never negative
    - user_message is the server's non-empty message, else a per-kind fallback
    - parse() is side-effect free: session teardown on UNAUTHORIZED belongs to its callers

Design Decisions:
    - Duck-typed response access (status_code, headers, json()): accepts httpx errors and
      any SDK error that exposes a `response` attribute
    - Injected clock: reset-timestamp headers are converted against a testable "now"
    - 408 Request Timeout classified as NETWORK alongside transport timeouts
    - Status-specific views (conflict, not found, permission, ...) read ErrorDetails.server_data;
      they never re-inspect the raw response
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from optimistic.core.domain_types import ErrorKind
from optimistic.core.errors import (
    ErrorDetails, ErrorSeverity, FieldError, RequestFailedError,
)
from optimistic.schemas.error_body import ErrorBody

logger = logging.getLogger(__name__)

FALLBACK_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please log in again.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.SERVICE_UNAVAILABLE: (
        "The service is temporarily unavailable. Please try again in a moment."
    ),
    ErrorKind.VALIDATION: "Invalid input. Please check your data and try again.",
    ErrorKind.NETWORK: (
        "Cannot connect to server. Please check your connection and try again."
    ),
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}

_RESET_HEADERS = ("x-ratelimit-reset", "ratelimit-reset", "x-rate-limit-reset")

# Reset values above this are absolute epoch seconds, not deltas.
_EPOCH_SECONDS_FLOOR = 1_000_000_000
_EPOCH_MILLIS_FLOOR = 1_000_000_000_000

_NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)


def severity_for(status_code: int | None) -> ErrorSeverity:
    """Notifier severity for an HTTP status (None = no response)."""
    if status_code is None or status_code >= 500:
        return ErrorSeverity.ERROR
    if status_code in (401, 403):
        return ErrorSeverity.ERROR
    if status_code >= 400:
        return ErrorSeverity.WARNING
    return ErrorSeverity.INFO


def is_retryable(details: ErrorDetails) -> bool:
    return details.is_retryable


def format_duration(ms: int) -> str:
    """Human-readable duration: 850ms, 30s, 2m."""
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{round(ms / 1000)}s"
    return f"{round(ms / 60_000)}m"


class ErrorClassifier:
    """Maps any raw failure onto the fixed ErrorKind taxonomy."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def parse(self, raw: object) -> ErrorDetails:
        """Classify `raw`. Total: falls back to UNKNOWN if inspection itself fails."""
        if isinstance(raw, RequestFailedError):
            return raw.details
        try:
            return self._classify(raw)
        except Exception as e:
            logger.warning(f"Could not inspect failure {raw!r}: {e}", exc_info=True)
            return ErrorDetails(
                kind=ErrorKind.UNKNOWN,
                user_message=FALLBACK_MESSAGES[ErrorKind.UNKNOWN],
                cause=raw if isinstance(raw, BaseException) else None,
            )

    def _classify(self, raw: object) -> ErrorDetails:
        cause = raw if isinstance(raw, BaseException) else None
        response = _response_of(raw)
        status = _status_of(response) if response is not None else None

        if status is None:
            kind = ErrorKind.NETWORK if isinstance(raw, _NETWORK_ERRORS) else ErrorKind.UNKNOWN
            return ErrorDetails(
                kind=kind,
                user_message=FALLBACK_MESSAGES[kind],
                cause=cause,
                severity=ErrorSeverity.ERROR,
            )

        body = _parse_body(response)
        kind = _kind_for_status(status)
        retry_after_ms = None
        if kind is ErrorKind.RATE_LIMITED:
            retry_after_ms = self._retry_after_ms(_headers_of(response), body)
        field_errors: tuple[FieldError, ...] = ()
        if kind is ErrorKind.VALIDATION:
            field_errors = _field_errors(body)

        server_message = body.display_message
        return ErrorDetails(
            kind=kind,
            user_message=server_message or FALLBACK_MESSAGES[kind],
            cause=cause,
            status_code=status,
            retry_after_ms=retry_after_ms,
            code=body.code,
            server_message=server_message,
            field_errors=field_errors,
            severity=severity_for(status),
            server_field=body.field,
            server_data=body.details if isinstance(body.details, Mapping) else {},
        )

    # ─── Rate-limit hints ────────────────────────────────────────

    def _retry_after_ms(self, headers: dict[str, str], body: ErrorBody) -> int | None:
        """First usable hint: Retry-After, reset headers, then body retryAfter."""
        value = headers.get("retry-after")
        if value:
            parsed = self._from_retry_after(value)
            if parsed is not None:
                return parsed
        for name in _RESET_HEADERS:
            value = headers.get(name)
            if value:
                parsed = self._from_reset(value)
                if parsed is not None:
                    return parsed
        if body.retry_after is not None and body.retry_after >= 0:
            return int(body.retry_after * 1000)
        return None

    def _from_retry_after(self, value: str) -> int | None:
        try:
            return max(0, int(float(value) * 1000))
        except ValueError:
            pass
        try:
            when: datetime = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        return max(0, int((when.timestamp() - self._clock()) * 1000))

    def _from_reset(self, value: str) -> int | None:
        try:
            reset = float(value)
        except ValueError:
            return None
        if reset >= _EPOCH_MILLIS_FLOOR:
            return max(0, int(reset - self._clock() * 1000))
        if reset >= _EPOCH_SECONDS_FLOOR:
            return max(0, int((reset - self._clock()) * 1000))
        return max(0, int(reset * 1000))


# ─── Response inspection ─────────────────────────────────────────

def _response_of(raw: object) -> Any:
    if isinstance(raw, httpx.HTTPStatusError):
        return raw.response
    if isinstance(raw, httpx.RequestError):
        return None
    response = getattr(raw, "response", None)
    if response is not None:
        return response
    # Errors that carry the status themselves (e.g. HTTPException-style)
    if isinstance(getattr(raw, "status_code", None), int):
        return raw
    return None


def _status_of(response: Any) -> int | None:
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(response, "status", None)
    return status if isinstance(status, int) else None


def _headers_of(response: Any) -> dict[str, str]:
    headers = getattr(response, "headers", None)
    if not isinstance(headers, (Mapping, httpx.Headers)):
        return {}
    return {str(k).lower(): str(v) for k, v in headers.items()}


def _parse_body(response: Any) -> ErrorBody:
    data: Any = None
    reader = getattr(response, "json", None)
    if callable(reader):
        try:
            data = reader()
        except (ValueError, httpx.ResponseNotRead):
            data = None
    elif isinstance(getattr(response, "data", None), Mapping):
        data = response.data
    if not isinstance(data, Mapping):
        return ErrorBody()
    try:
        return ErrorBody.model_validate(dict(data))
    except ValidationError as e:
        logger.debug(f"Unrecognized error body shape: {e}")
        return ErrorBody()


def _kind_for_status(status: int) -> ErrorKind:
    if status == 401:
        return ErrorKind.UNAUTHORIZED
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 503:
        return ErrorKind.SERVICE_UNAVAILABLE
    if status == 408:
        return ErrorKind.NETWORK
    if 400 <= status < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def _field_errors(body: ErrorBody) -> tuple[FieldError, ...]:
    """Array, object, FastAPI `detail`, or single-field shapes."""
    raw = body.raw_field_errors
    if isinstance(raw, list):
        return tuple(_field_error_from_item(item) for item in raw if isinstance(item, Mapping))
    if isinstance(raw, Mapping):
        return tuple(
            FieldError(field=str(name), message=_join_messages(message))
            for name, message in raw.items()
        )
    if body.field:
        return (FieldError(
            field=body.field,
            message=body.display_message or FALLBACK_MESSAGES[ErrorKind.VALIDATION],
        ),)
    return ()


def _field_error_from_item(item: Mapping) -> FieldError:
    loc = item.get("loc")
    if isinstance(loc, (list, tuple)) and loc:
        parts = [str(p) for p in loc if p not in ("body", "query", "path")]
        name = ".".join(parts) or "unknown"
    else:
        name = str(item.get("field") or "unknown")
    message = item.get("message") or item.get("msg") or "Invalid value"
    return FieldError(field=name, message=str(message), value=item.get("value"))


def _join_messages(message: Any) -> str:
    if isinstance(message, (list, tuple)):
        return "; ".join(str(m) for m in message)
    return str(message)


# ─── Status-specific detail views ────────────────────────────────

class ConflictType(str, Enum):
    """Why the server refused a write with 409."""
    DUPLICATE = "duplicate"
    VERSION = "version"
    STATE = "state"
    CONCURRENT = "concurrent"


_CONFLICT_HINTS: tuple[tuple[ConflictType, tuple[str, ...]], ...] = (
    (ConflictType.DUPLICATE, ("already exists", "duplicate")),
    (ConflictType.VERSION, ("version", "outdated")),
    (ConflictType.STATE, ("state", "status")),
    (ConflictType.CONCURRENT, ("concurrent", "modified")),
)

DEFAULT_NOT_FOUND_SUGGESTIONS: tuple[str, ...] = (
    "Check if the resource ID is correct",
    "Verify the resource hasn't been deleted",
    "Try refreshing the page",
    "Return to the list view",
)


@dataclass(frozen=True)
class NotFoundInfo:
    resource_type: str
    resource_id: Any
    message: str
    suggestions: tuple[str, ...]


@dataclass(frozen=True)
class ConflictInfo:
    conflict_type: ConflictType
    message: str
    field: str | None = None
    value: Any = None
    existing: Any = None


@dataclass(frozen=True)
class PermissionInfo:
    action: str
    message: str
    resource: str | None = None
    required_role: str | None = None
    current_role: str | None = None


@dataclass(frozen=True)
class PayloadTooLargeInfo:
    message: str
    file_name: str | None = None
    size: int | None = None
    max_size: int | None = None


@dataclass(frozen=True)
class BusinessRuleInfo:
    constraint: str
    message: str
    field: str | None = None
    value: Any = None


def is_not_found(details: ErrorDetails) -> bool:
    return details.status_code == 404


def is_forbidden(details: ErrorDetails) -> bool:
    return details.status_code == 403


def is_conflict(details: ErrorDetails) -> bool:
    return details.status_code == 409


def is_payload_too_large(details: ErrorDetails) -> bool:
    return details.status_code == 413


def is_unprocessable(details: ErrorDetails) -> bool:
    return details.status_code == 422


def infer_conflict_type(message: str | None) -> ConflictType:
    """Guess the conflict flavour from the server message; DUPLICATE when nothing matches."""
    lowered = (message or "").lower()
    for conflict_type, hints in _CONFLICT_HINTS:
        if any(hint in lowered for hint in hints):
            return conflict_type
    return ConflictType.DUPLICATE


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def not_found_info(details: ErrorDetails, resource_type: str = "Resource") -> NotFoundInfo:
    data = details.server_data
    suggestions = data.get("suggestions")
    return NotFoundInfo(
        resource_type=data.get("resourceType") or resource_type,
        resource_id=_first(data, "resourceId", "id"),
        message=details.user_message,
        suggestions=(
            tuple(str(s) for s in suggestions) if isinstance(suggestions, list)
            else DEFAULT_NOT_FOUND_SUGGESTIONS
        ),
    )


def conflict_info(details: ErrorDetails) -> ConflictInfo:
    """409 payload: explicit `conflictType` wins over the message heuristic."""
    data = details.server_data
    try:
        conflict_type = ConflictType(data.get("conflictType"))
    except ValueError:
        conflict_type = infer_conflict_type(details.server_message)
    return ConflictInfo(
        conflict_type=conflict_type,
        message=details.user_message,
        field=data.get("field") or details.server_field,
        value=data.get("value"),
        existing=_first(data, "existingResource", "existing"),
    )


def permission_info(details: ErrorDetails, current_role: str | None = None) -> PermissionInfo:
    data = details.server_data
    return PermissionInfo(
        action=data.get("action") or "perform this action",
        message=details.user_message,
        resource=_first(data, "resource", "resourceType"),
        required_role=_first(data, "requiredRole", "required_role"),
        current_role=current_role or _first(data, "currentRole", "current_role"),
    )


def payload_too_large_info(details: ErrorDetails) -> PayloadTooLargeInfo:
    data = details.server_data
    return PayloadTooLargeInfo(
        message=details.user_message,
        file_name=data.get("fileName"),
        size=data.get("fileSize"),
        max_size=_first(data, "maxSize", "limit"),
    )


def business_rule_info(details: ErrorDetails) -> BusinessRuleInfo:
    data = details.server_data
    return BusinessRuleInfo(
        constraint=data.get("constraint") or details.code or "BUSINESS_RULE_VIOLATION",
        message=details.user_message,
        field=data.get("field") or details.server_field,
        value=data.get("value"),
    )
