from __future__ import annotations

from datetime import datetime, timedelta, timezone
import socket

import httpx
import pytest

from app.integrations.google_calendar_client import CalendarAPIError
from app.resilience.classifier import ErrorClassifier, classify, parse_retry_after
from app.resilience.errors import ErrorSeverity, ExternalAPIError, ExternalAPIErrorType


def _status_error(status_code: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://calendar.test/events")
    response = httpx.Response(status_code, headers=headers or {}, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status_code, expected, retryable",
        [
            (401, ExternalAPIErrorType.AUTHENTICATION, False),
            (403, ExternalAPIErrorType.AUTHORIZATION, False),
            (404, ExternalAPIErrorType.NOT_FOUND, False),
            (408, ExternalAPIErrorType.TIMEOUT, True),
            (409, ExternalAPIErrorType.CONFLICT, False),
            (429, ExternalAPIErrorType.RATE_LIMITED, True),
            (400, ExternalAPIErrorType.VALIDATION, False),
            (422, ExternalAPIErrorType.VALIDATION, False),
            (500, ExternalAPIErrorType.SERVER_ERROR, True),
            (503, ExternalAPIErrorType.SERVER_ERROR, True),
            (504, ExternalAPIErrorType.TIMEOUT, True),
            (418, ExternalAPIErrorType.UNKNOWN, False),
        ],
    )
    def test_http_status_maps_to_type(self, status_code, expected, retryable):
        error = classify(_status_error(status_code))

        assert error.type == expected
        assert error.retryable is retryable
        assert error.status_code == status_code

    def test_403_rate_limit_reason_is_rate_limited(self):
        error = classify(CalendarAPIError(403, "userRateLimitExceeded"))

        assert error.type == ExternalAPIErrorType.RATE_LIMITED
        assert error.retryable is True
        assert error.context["reason"] == "userRateLimitExceeded"

    def test_403_quota_reason_is_quota_exceeded(self):
        error = classify(CalendarAPIError(403, "dailyLimitExceeded"))

        assert error.type == ExternalAPIErrorType.QUOTA_EXCEEDED
        assert error.retryable is False
        assert error.severity == ErrorSeverity.CRITICAL

    def test_429_carries_retry_after_seconds(self):
        error = classify(_status_error(429, {"Retry-After": "7"}))

        assert error.retry_after == 7.0

    def test_retry_after_ignored_for_server_errors(self):
        error = classify(CalendarAPIError(503, headers={"Retry-After": "7"}))

        assert error.retry_after is None


class TestNonHttpErrors:
    @pytest.mark.parametrize(
        "raw",
        [
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            ConnectionResetError("reset"),
            TimeoutError(),
            socket.gaierror("dns"),
        ],
    )
    def test_transport_failures_are_network(self, raw):
        error = classify(raw)

        assert error.type == ExternalAPIErrorType.NETWORK
        assert error.retryable is True
        assert error.status_code is None

    def test_anything_else_is_unknown_and_not_retryable(self):
        error = classify(KeyError("missing"), {"operation": "create_event"})

        assert error.type == ExternalAPIErrorType.UNKNOWN
        assert error.retryable is False
        assert error.context["operation"] == "create_event"
        assert error.context["error_class"] == "KeyError"

    def test_already_classified_error_passes_through(self):
        original = ExternalAPIError(ExternalAPIErrorType.CONFLICT, retryable=False)

        assert ErrorClassifier().classify(original) is original


class TestExternalAPIError:
    def test_context_is_read_only(self):
        error = ExternalAPIError(ExternalAPIErrorType.NETWORK, retryable=True, context={"key": "x"})

        with pytest.raises(TypeError):
            error.context["key"] = "y"  # type: ignore[index]
        with pytest.raises(AttributeError):
            error.retryable = False  # type: ignore[misc]

    def test_user_message_never_contains_detail(self):
        error = ExternalAPIError(
            ExternalAPIErrorType.SERVER_ERROR, retryable=True, detail="stack trace from upstream"
        )

        assert "stack trace" not in error.user_message
        assert error.to_dict()["type"] == "serverError"


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("12") == 12.0

    def test_http_date(self):
        now = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = (now + timedelta(seconds=30)).strftime("%a, %d %b %Y %H:%M:%S GMT")

        assert parse_retry_after(header, now=now) == 30.0

    def test_past_date_clamps_to_zero(self):
        now = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

        assert parse_retry_after("Sat, 01 Mar 2025 11:00:00 GMT", now=now) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unparseable_is_none(self, value):
        assert parse_retry_after(value) is None
