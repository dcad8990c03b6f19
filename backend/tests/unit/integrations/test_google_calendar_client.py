"""Tests for the Google Calendar integration client."""

from __future__ import annotations

from datetime import datetime, timezone
import json

import httpx
from pydantic import SecretStr
import pytest

from app.integrations.google_calendar_client import (
    BusyInterval,
    CalendarAPIError,
    CalendarEventData,
    FakeCalendarClient,
    GoogleCalendarClient,
)

START = datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc)
END = datetime(2025, 6, 2, 11, 0, tzinfo=timezone.utc)


def _client(handler) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        access_token="tok_test",
        base_url="https://calendar.test/v3",
        transport=httpx.MockTransport(handler),
    )


def _event() -> CalendarEventData:
    return CalendarEventData(
        summary="Driving Lesson - Standard",
        start=START,
        end=END,
        description="Lesson Type: Standard\nNotes: ",
        location="Depot",
        time_zone="Australia/Sydney",
    )


# ── Free/busy ──────────────────────────────────────────────────────────


class TestFreeBusy:
    @pytest.mark.asyncio
    async def test_posts_query_and_parses_busy(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "calendars": {
                        "admin@school.test": {
                            "busy": [{"start": "2025-06-02T09:00:00Z", "end": "2025-06-02T10:00:00Z"}]
                        }
                    }
                },
            )

        busy = await _client(handler).get_free_busy("admin@school.test", START, END)

        assert captured["url"] == "https://calendar.test/v3/freeBusy"
        assert captured["auth"] == "Bearer tok_test"
        assert captured["body"] == {
            "timeMin": "2025-06-02T10:00:00Z",
            "timeMax": "2025-06-02T11:00:00Z",
            "items": [{"id": "admin@school.test"}],
        }
        assert busy == [
            BusyInterval(
                start=datetime(2025, 6, 2, 9, tzinfo=timezone.utc),
                end=datetime(2025, 6, 2, 10, tzinfo=timezone.utc),
            )
        ]

    @pytest.mark.asyncio
    async def test_per_calendar_not_found_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"calendars": {"missing": {"errors": [{"domain": "global", "reason": "notFound"}]}}},
            )

        with pytest.raises(CalendarAPIError) as exc_info:
            await _client(handler).get_free_busy("missing", START, END)

        assert exc_info.value.status_code == 404
        assert exc_info.value.reason == "notFound"

    @pytest.mark.asyncio
    async def test_error_envelope_reason_extracted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                headers={"Retry-After": "3"},
                json={"error": {"code": 403, "errors": [{"reason": "rateLimitExceeded"}]}},
            )

        with pytest.raises(CalendarAPIError) as exc_info:
            await _client(handler).get_free_busy("primary", START, END)

        assert exc_info.value.status_code == 403
        assert exc_info.value.reason == "rateLimitExceeded"
        assert exc_info.value.headers["retry-after"] == "3"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(CalendarAPIError) as exc_info:
            await _client(handler).get_free_busy("primary", START, END)

        assert exc_info.value.status_code == 502
        assert exc_info.value.reason is None


# ── Events ─────────────────────────────────────────────────────────────


class TestEvents:
    @pytest.mark.asyncio
    async def test_create_event_returns_id(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.raw_path.decode()
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "evt_123", "status": "confirmed"})

        event_id = await _client(handler).create_event("admin@school.test", _event())

        assert event_id == "evt_123"
        assert captured["path"] == "/v3/calendars/admin%40school.test/events"
        assert captured["body"]["summary"] == "Driving Lesson - Standard"
        assert captured["body"]["start"] == {
            "dateTime": "2025-06-02T10:00:00+00:00",
            "timeZone": "Australia/Sydney",
        }
        assert captured["body"]["location"] == "Depot"

    @pytest.mark.asyncio
    async def test_cancel_event_deletes(self):
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(204)

        assert await _client(handler).cancel_event("primary", "evt_123") is True
        assert methods == ["DELETE"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_cancel_missing_event_is_not_an_error(self, status_code):
        client = _client(lambda request: httpx.Response(status_code))

        assert await client.cancel_event("primary", "evt_gone") is False

    @pytest.mark.asyncio
    async def test_cancel_server_error_raises(self):
        client = _client(lambda request: httpx.Response(500))

        with pytest.raises(CalendarAPIError):
            await client.cancel_event("primary", "evt_123")

    @pytest.mark.asyncio
    async def test_transport_error_propagates_raw(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(httpx.ConnectError):
            await _client(handler).create_event("primary", _event())

    def test_secret_str_token_unwrapped(self):
        client = GoogleCalendarClient(access_token=SecretStr("tok_secret"))

        assert client._access_token == "tok_secret"


# ── Fake client ────────────────────────────────────────────────────────


class TestFakeCalendarClient:
    @pytest.mark.asyncio
    async def test_created_events_show_up_as_busy(self):
        fake = FakeCalendarClient()
        event_id = await fake.create_event("primary", _event())

        busy = await fake.get_free_busy("primary", START, END)

        assert event_id == "fake_event_1"
        assert busy == [BusyInterval(start=START, end=END)]

    @pytest.mark.asyncio
    async def test_cancel_is_reported_once(self):
        fake = FakeCalendarClient()
        event_id = await fake.create_event("primary", _event())

        assert await fake.cancel_event("primary", event_id) is True
        assert await fake.cancel_event("primary", event_id) is False
        assert fake.active_events() == []

    @pytest.mark.asyncio
    async def test_queued_error_applies_to_next_calls_only(self):
        fake = FakeCalendarClient()
        fake.set_error("create_event", CalendarAPIError(503), times=1)

        with pytest.raises(CalendarAPIError):
            await fake.create_event("primary", _event())
        assert await fake.create_event("primary", _event()) == "fake_event_1"
        assert len(fake.calls("create_event")) == 2

    @pytest.mark.asyncio
    async def test_clear_errors(self):
        fake = FakeCalendarClient()
        fake.set_error("get_free_busy", CalendarAPIError(500))
        fake.clear_errors()

        assert await fake.get_free_busy("primary", START, END) == []
