"""Error Classifier — tests for total normalization of transport failures.

Tests cover:
    - Status mapping (401, 429, 503, other 4xx, 408, 5xx)
    - Network detection (httpx transport errors, builtin timeouts, no response)
    - Retry-After, X-RateLimit-Reset, RateLimit-Reset, and body retryAfter extraction
    - Field-level validation errors (array, object, FastAPI detail, single field)
    - user_message precedence (server message vs per-kind fallback)
    - Totality on malformed inputs
"""

import httpx
import pytest

from optimistic.core.domain_types import ErrorKind
from optimistic.core.error_classifier import (
    FALLBACK_MESSAGES, ErrorClassifier, format_duration, severity_for,
)
from optimistic.core.errors import ErrorSeverity, RequestFailedError
from tests.fakes import FakeClock, http_error


@pytest.fixture
def classifier(clock):
    return ErrorClassifier(clock=clock)


# ─── Status mapping ──────────────────────────────────────────────

@pytest.mark.parametrize("status, kind", [
    (401, ErrorKind.UNAUTHORIZED),
    (429, ErrorKind.RATE_LIMITED),
    (503, ErrorKind.SERVICE_UNAVAILABLE),
    (400, ErrorKind.VALIDATION),
    (404, ErrorKind.VALIDATION),
    (422, ErrorKind.VALIDATION),
    (408, ErrorKind.NETWORK),
    (500, ErrorKind.UNKNOWN),
    (502, ErrorKind.UNKNOWN),
])
def test_status_codes_map_to_fixed_taxonomy(classifier, status, kind):
    details = classifier.parse(http_error(status))
    assert details.kind is kind
    assert details.status_code == status


def test_cause_is_the_raw_error(classifier):
    raw = http_error(400)
    assert classifier.parse(raw).cause is raw


def test_response_attribute_duck_typing(classifier):
    class _SdkError(Exception):
        def __init__(self):
            self.response = httpx.Response(503)

    assert classifier.parse(_SdkError()).kind is ErrorKind.SERVICE_UNAVAILABLE


def test_error_carrying_status_code_itself(classifier):
    class _StatusError(Exception):
        status_code = 401

    assert classifier.parse(_StatusError()).kind is ErrorKind.UNAUTHORIZED


# ─── Network / unknown ───────────────────────────────────────────

@pytest.mark.parametrize("raw", [
    httpx.ConnectError("refused"),
    httpx.ReadTimeout("slow"),
    TimeoutError(),
    ConnectionResetError(),
])
def test_no_response_is_network(classifier, raw):
    details = classifier.parse(raw)
    assert details.kind is ErrorKind.NETWORK
    assert details.status_code is None
    assert details.user_message == FALLBACK_MESSAGES[ErrorKind.NETWORK]


@pytest.mark.parametrize("raw", [ValueError("boom"), "not even an exception", None, 42])
def test_anything_else_is_unknown(classifier, raw):
    details = classifier.parse(raw)
    assert details.kind is ErrorKind.UNKNOWN
    assert details.user_message == FALLBACK_MESSAGES[ErrorKind.UNKNOWN]


def test_parse_never_raises_when_inspection_fails(classifier):
    class _Hostile(Exception):
        @property
        def response(self):
            raise RuntimeError("broken SDK object")

    assert classifier.parse(_Hostile()).kind is ErrorKind.UNKNOWN


def test_already_classified_error_returns_its_details(classifier):
    details = classifier.parse(http_error(429))
    assert classifier.parse(RequestFailedError(details)) is details


# ─── Rate-limit hints ────────────────────────────────────────────

def test_ratelimit_reset_header_absolute_epoch(classifier, clock):
    """429 with x-ratelimit-reset = now + 30s → ~30000ms."""
    raw = http_error(429, headers={"x-ratelimit-reset": str(int(clock.now) + 30)})
    details = classifier.parse(raw)
    assert details.kind is ErrorKind.RATE_LIMITED
    assert details.retry_after_ms == 30_000


def test_ratelimit_reset_against_wall_clock():
    import time
    raw = http_error(429, headers={"X-RateLimit-Reset": str(int(time.time()) + 30)})
    details = ErrorClassifier().parse(raw)
    assert 28_000 <= details.retry_after_ms <= 30_000


def test_retry_after_seconds(classifier):
    details = classifier.parse(http_error(429, headers={"Retry-After": "7"}))
    assert details.retry_after_ms == 7000


def test_retry_after_http_date(classifier, clock):
    from email.utils import formatdate
    raw = http_error(429, headers={"Retry-After": formatdate(clock.now + 12, usegmt=True)})
    assert classifier.parse(raw).retry_after_ms == 12_000


def test_ratelimit_reset_delta_seconds(classifier):
    details = classifier.parse(http_error(429, headers={"RateLimit-Reset": "4"}))
    assert details.retry_after_ms == 4000


def test_reset_in_the_past_clamps_to_zero(classifier, clock):
    raw = http_error(429, headers={"x-ratelimit-reset": str(int(clock.now) - 100)})
    assert classifier.parse(raw).retry_after_ms == 0


def test_body_retry_after_fields(classifier):
    camel = classifier.parse(http_error(429, json={"retryAfter": 3}))
    snake = classifier.parse(http_error(429, json={"retry_after": 2.5}))
    assert camel.retry_after_ms == 3000
    assert snake.retry_after_ms == 2500


def test_rate_limited_without_hint_has_no_retry_after(classifier):
    assert classifier.parse(http_error(429)).retry_after_ms is None


def test_retry_after_ignored_for_other_kinds(classifier):
    details = classifier.parse(http_error(503, headers={"Retry-After": "9"}))
    assert details.retry_after_ms is None


# ─── Validation details ──────────────────────────────────────────

def test_field_errors_from_array(classifier):
    raw = http_error(400, json={
        "message": "Validation failed",
        "errors": [
            {"field": "email", "message": "Invalid email", "value": "x"},
            {"field": "name", "message": "Required"},
        ],
    })
    details = classifier.parse(raw)
    assert [(e.field, e.message) for e in details.field_errors] == [
        ("email", "Invalid email"), ("name", "Required"),
    ]
    assert details.field_errors[0].value == "x"


def test_field_errors_from_object(classifier):
    raw = http_error(400, json={"details": {"email": "Invalid", "password": ["Too short", "Weak"]}})
    errors = {e.field: e.message for e in classifier.parse(raw).field_errors}
    assert errors == {"email": "Invalid", "password": "Too short; Weak"}


def test_field_errors_from_fastapi_detail(classifier):
    raw = http_error(422, json={"detail": [
        {"loc": ["body", "title"], "msg": "Field required", "type": "missing"},
    ]})
    details = classifier.parse(raw)
    assert details.field_errors[0].field == "title"
    assert details.field_errors[0].message == "Field required"


def test_single_field_error(classifier):
    raw = http_error(409, json={"message": "Name taken", "field": "name"})
    details = classifier.parse(raw)
    assert details.field_errors[0].field == "name"
    assert details.field_errors[0].message == "Name taken"


def test_enveloped_error_body(classifier):
    raw = http_error(400, json={"success": False, "error": {"message": "Bad team", "code": "E_TEAM"}})
    details = classifier.parse(raw)
    assert details.user_message == "Bad team"
    assert details.code == "E_TEAM"


# ─── Messages and severity ───────────────────────────────────────

def test_server_message_preferred(classifier):
    details = classifier.parse(http_error(503, json={"message": "Down for maintenance"}))
    assert details.user_message == "Down for maintenance"


def test_blank_server_message_falls_back(classifier):
    details = classifier.parse(http_error(401, json={"message": "   "}))
    assert details.user_message == FALLBACK_MESSAGES[ErrorKind.UNAUTHORIZED]


def test_non_json_body_falls_back(classifier):
    request = httpx.Request("GET", "http://test/api/teams")
    response = httpx.Response(400, content=b"<html>oops</html>", request=request)
    raw = httpx.HTTPStatusError("bad", request=request, response=response)
    assert classifier.parse(raw).user_message == FALLBACK_MESSAGES[ErrorKind.VALIDATION]


def test_severity_mapping():
    assert severity_for(None) is ErrorSeverity.ERROR
    assert severity_for(500) is ErrorSeverity.ERROR
    assert severity_for(403) is ErrorSeverity.ERROR
    assert severity_for(404) is ErrorSeverity.WARNING
    assert severity_for(429) is ErrorSeverity.WARNING
    assert severity_for(200) is ErrorSeverity.INFO


def test_format_duration():
    assert format_duration(850) == "850ms"
    assert format_duration(30_000) == "30s"
    assert format_duration(120_000) == "2m"


def test_fake_clock_is_independent():
    clock = FakeClock(now=100.0)
    clock.advance(5)
    assert clock() == 105.0
