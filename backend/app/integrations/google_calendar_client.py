"""Google Calendar v3 Integration Client.

Handles free/busy queries and event creation/deletion against the Google
Calendar REST API with a bearer token. HTTP errors are raised as
``CalendarAPIError``; transport failures propagate as httpx exceptions.
Interpreting either is left to the resilience layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import itertools
import logging
from typing import Any, Mapping, Protocol, cast
from urllib.parse import quote

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class CalendarAPIError(RuntimeError):
    """Raised when the calendar API responds with an error status."""

    def __init__(
        self,
        status_code: int,
        reason: str | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        body: str = "",
    ) -> None:
        super().__init__(f"Calendar API error {status_code}" + (f" ({reason})" if reason else ""))
        self.status_code = status_code
        self.reason = reason
        self.headers = dict(headers or {})
        self.body = body


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass(frozen=True)
class CalendarEventData:
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    location: str | None = None
    time_zone: str = "UTC"

    def to_google(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": self.summary,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
        }
        if self.location:
            body["location"] = self.location
        return body


class CalendarClient(Protocol):
    async def get_free_busy(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]: ...

    async def create_event(self, calendar_id: str, event: CalendarEventData) -> str: ...

    async def cancel_event(self, calendar_id: str, external_id: str) -> bool: ...


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _first_error_reason(payload: Any) -> str | None:
    """Pull ``error.errors[0].reason`` out of a Google error envelope."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    errors = error.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        reason = errors[0].get("reason")
        return str(reason) if reason else None
    status = error.get("status")
    return str(status) if status else None


class GoogleCalendarClient:
    """Async HTTP client for the Google Calendar v3 REST API."""

    def __init__(
        self,
        *,
        access_token: str | SecretStr,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = (
            access_token.get_secret_value() if isinstance(access_token, SecretStr) else access_token
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.request(
                method, url, headers=headers, json=json_body, params=params
            )

        if response.status_code >= 400:
            try:
                reason = _first_error_reason(response.json())
            except ValueError:
                reason = None
            logger.error(
                "Calendar API error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise CalendarAPIError(
                response.status_code,
                reason,
                headers=dict(response.headers),
                body=response.text[:500],
            )
        return response

    async def get_free_busy(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        body = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "items": [{"id": calendar_id}],
        }
        response = await self._request("POST", "freeBusy", json_body=body)
        payload = cast(dict[str, Any], response.json())
        calendar = (payload.get("calendars") or {}).get(calendar_id) or {}

        errors = calendar.get("errors") or []
        if errors:
            reason = errors[0].get("reason") if isinstance(errors[0], dict) else None
            status_code = 404 if reason == "notFound" else 500
            raise CalendarAPIError(status_code, reason, body=str(errors)[:500])

        return [
            BusyInterval(start=_parse_datetime(item["start"]), end=_parse_datetime(item["end"]))
            for item in calendar.get("busy") or []
        ]

    async def create_event(self, calendar_id: str, event: CalendarEventData) -> str:
        response = await self._request(
            "POST",
            f"calendars/{quote(calendar_id, safe='')}/events",
            json_body=event.to_google(),
        )
        payload = cast(dict[str, Any], response.json())
        return str(payload["id"])

    async def cancel_event(self, calendar_id: str, external_id: str) -> bool:
        """Delete an event. Returns False when the event was already gone."""
        try:
            await self._request(
                "DELETE",
                f"calendars/{quote(calendar_id, safe='')}/events/{quote(external_id, safe='')}",
            )
        except CalendarAPIError as exc:
            if exc.status_code in (404, 410):
                logger.info("Calendar event %s already removed from %s", external_id, calendar_id)
                return False
            raise
        return True


@dataclass
class FakeCalendarEvent:
    calendar_id: str
    external_id: str
    data: CalendarEventData
    cancelled: bool = False


class FakeCalendarClient:
    """In-memory stub for testing/non-production environments."""

    def __init__(self, busy: Mapping[str, list[BusyInterval]] | None = None, **kwargs: Any) -> None:
        self._busy: dict[str, list[BusyInterval]] = {k: list(v) for k, v in (busy or {}).items()}
        self._calls: list[dict[str, Any]] = []
        self._errors: dict[str, list[BaseException]] = {}
        self._sticky_errors: dict[str, BaseException] = {}
        self._ids = itertools.count(1)
        self.events: dict[str, FakeCalendarEvent] = {}

    def add_busy(self, calendar_id: str, start: datetime, end: datetime) -> None:
        self._busy.setdefault(calendar_id, []).append(BusyInterval(start=start, end=end))

    def set_error(self, method: str, error: BaseException, *, times: int | None = None) -> None:
        """Inject a method-specific error, either permanently or for the next ``times`` calls."""
        if times is None:
            self._sticky_errors[method] = error
        else:
            self._errors.setdefault(method, []).extend([error] * times)

    def clear_errors(self) -> None:
        """Reset all injected fake-client errors."""
        self._errors.clear()
        self._sticky_errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        queued = self._errors.get(method)
        if queued:
            raise queued.pop(0)
        error = self._sticky_errors.get(method)
        if error is not None:
            raise error

    def calls(self, method: str | None = None) -> list[dict[str, Any]]:
        return [c for c in self._calls if method is None or c["method"] == method]

    def active_events(self, calendar_id: str | None = None) -> list[FakeCalendarEvent]:
        return [
            e
            for e in self.events.values()
            if not e.cancelled and (calendar_id is None or e.calendar_id == calendar_id)
        ]

    async def get_free_busy(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        self._calls.append(
            {"method": "get_free_busy", "calendar_id": calendar_id, "start": start, "end": end}
        )
        self._raise_if_injected("get_free_busy")
        busy = [b for b in self._busy.get(calendar_id, []) if b.overlaps(start, end)]
        busy.extend(
            BusyInterval(start=e.data.start, end=e.data.end)
            for e in self.active_events(calendar_id)
            if e.data.start < end and start < e.data.end
        )
        return busy

    async def create_event(self, calendar_id: str, event: CalendarEventData) -> str:
        self._calls.append({"method": "create_event", "calendar_id": calendar_id, "event": event})
        self._raise_if_injected("create_event")
        external_id = f"fake_event_{next(self._ids)}"
        self.events[external_id] = FakeCalendarEvent(
            calendar_id=calendar_id, external_id=external_id, data=event
        )
        return external_id

    async def cancel_event(self, calendar_id: str, external_id: str) -> bool:
        self._calls.append(
            {"method": "cancel_event", "calendar_id": calendar_id, "external_id": external_id}
        )
        self._raise_if_injected("cancel_event")
        stored = self.events.get(external_id)
        if stored is None or stored.cancelled:
            return False
        stored.cancelled = True
        return True
