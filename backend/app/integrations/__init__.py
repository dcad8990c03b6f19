"""External service integrations for the booking platform."""

from .google_calendar_client import (
    BusyInterval,
    CalendarAPIError,
    CalendarClient,
    CalendarEventData,
    FakeCalendarClient,
    GoogleCalendarClient,
)

__all__ = [
    "BusyInterval",
    "CalendarAPIError",
    "CalendarClient",
    "CalendarEventData",
    "FakeCalendarClient",
    "GoogleCalendarClient",
]
