# backend/app/schemas/booking.py
"""
Booking schemas for the driving-school platform.

A request gives ``start_at`` plus either ``end_at`` or ``duration_minutes``;
the service fills in the lesson defaults.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from .base import StandardizedModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    start_at: datetime = Field(..., description="Lesson start (ISO 8601, timezone-aware preferred)")
    end_at: Optional[datetime] = Field(None, description="Lesson end; derived from duration if omitted")
    duration_minutes: Optional[int] = Field(
        None, ge=15, le=720, description="Lesson length in minutes (default 60)"
    )
    lesson_type: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)
    user_calendar_id: Optional[str] = Field(None, max_length=255)
    buffer_minutes: Optional[int] = Field(None, ge=0, le=240)

    @field_validator("lesson_type", "location", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        """Blank strings fall back to defaults."""
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _check_range(self) -> "BookingCreate":
        if self.end_at is not None and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class CalendarEventRefResponse(StandardizedModel):
    owner_role: str
    calendar_id: str
    external_id: str
    start_at: datetime
    end_at: datetime
    status: str


class BookingResponse(StandardizedModel):
    id: str
    account_id: str
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    lesson_type: str
    location: Optional[str] = None
    notes: Optional[str] = None
    hours_consumed: float
    status: str
    external_event_refs: List[CalendarEventRefResponse] = Field(default_factory=list)


class BookingCreateResponse(StandardizedModel):
    status: str
    booking: BookingResponse
    events: List[CalendarEventRefResponse]
    remaining_hours: float


class BookingCancelRequest(StrictRequestModel):
    reason: str = Field(..., max_length=1000)
    cancelled_by: Optional[str] = Field(None, max_length=64)


class BookingCancelResponse(StandardizedModel):
    booking: BookingResponse
    hours_refunded: float
    remaining_hours: float
    events_cancelled: List[str]
    events_failed: List[str]
