# backend/app/models/booking.py
"""
Booking model for the driving-school platform.

A booking is created PENDING by the booking saga, becomes CONFIRMED once the
calendar events, the booking record and the quota consumption have all
succeeded, and becomes CANCELLED when the saga compensates or an admin
cancels it. Cancelled bookings are kept as an audit trail, never deleted.
"""

from enum import Enum
import logging
from typing import List

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CalendarOwnerRole(str, Enum):
    """Whose calendar an event was written to."""

    ADMIN = "admin"
    USER = "user"


class CalendarEventStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Booking(Base):
    """
    Driving lesson booking.

    Hours consumed are recorded on the booking so that a later cancellation
    can re-credit exactly what was taken from the quota ledger.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    account_id = Column(String(64), nullable=False, index=True)

    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    lesson_type = Column(String(100), nullable=False, default="Standard")
    location = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    hours_consumed = Column(Numeric(6, 2, asdecimal=False), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    external_event_refs = relationship(
        "CalendarEventRef",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CalendarEventRef.owner_role",
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
        CheckConstraint("end_at > start_at", name="ck_bookings_time_order"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="ck_bookings_status",
        ),
        Index("ix_bookings_account_start", "account_id", "start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} account={self.account_id} "
            f"{self.start_at}-{self.end_at} status={self.status}>"
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED.value

    def active_event_refs(self) -> List["CalendarEventRef"]:
        return [
            ref for ref in self.external_event_refs if ref.status == CalendarEventStatus.ACTIVE.value
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "duration_minutes": self.duration_minutes,
            "lesson_type": self.lesson_type,
            "location": self.location,
            "notes": self.notes,
            "hours_consumed": self.hours_consumed,
            "status": self.status,
            "external_event_refs": [ref.to_dict() for ref in self.external_event_refs],
        }


class CalendarEventRef(Base):
    """Reference to an event created in an external calendar for a booking."""

    __tablename__ = "booking_calendar_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    owner_role = Column(String(10), nullable=False)
    calendar_id = Column(String(255), nullable=False)
    external_id = Column(String(255), nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=CalendarEventStatus.ACTIVE.value)

    booking = relationship("Booking", back_populates="external_event_refs")

    __table_args__ = (
        CheckConstraint("owner_role IN ('admin', 'user')", name="ck_calendar_events_owner_role"),
        Index("ix_calendar_events_booking", "booking_id"),
    )

    def to_dict(self) -> dict:
        return {
            "owner_role": self.owner_role,
            "calendar_id": self.calendar_id,
            "external_id": self.external_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "status": self.status,
        }
