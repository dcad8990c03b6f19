# backend/app/repositories/booking_repository.py
"""
Booking Repository for the booking platform

Implements data access for bookings and the calendar event references
that belong to them:
- Booking creation together with its event references
- Status transitions with an appended audit note
- Event reference bookkeeping when calendar events are cancelled
"""

from datetime import datetime, timezone
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus, CalendarEventRef, CalendarEventStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def append_note(existing: Optional[str], note: Optional[str], separator: str = "\n") -> Optional[str]:
    """Append a diagnostic note to booking notes without losing what the student wrote."""
    if not note:
        return existing
    if existing:
        return f"{existing}{separator}{note}"
    return note


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def add(self, booking: Booking) -> Booking:
        """Persist a fully built booking (with its event references) and flush."""
        try:
            self.db.add(booking)
            self.db.flush()
            return booking
        except SQLAlchemyError as exc:
            self.logger.error("Error inserting booking %s: %s", booking.id, exc)
            raise RepositoryException(f"Failed to insert booking: {exc}") from exc

    def get_with_events(self, booking_id: str) -> Optional[Booking]:
        try:
            return (
                self.db.query(Booking)
                .options(selectinload(Booking.external_event_refs))
                .filter(Booking.id == booking_id)
                .first()
            )
        except SQLAlchemyError as exc:
            raise RepositoryException(f"Failed to load booking {booking_id}: {exc}") from exc

    def set_status(
        self,
        booking_id: str,
        status: BookingStatus,
        note: Optional[str] = None,
    ) -> Optional[Booking]:
        """Move a booking to ``status`` and append ``note`` to its notes."""
        booking = self.get_with_events(booking_id)
        if booking is None:
            return None

        now = datetime.now(timezone.utc)
        booking.status = status.value
        booking.notes = append_note(booking.notes, note)
        if status == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif status == BookingStatus.CANCELLED:
            booking.cancelled_at = now

        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            raise RepositoryException(f"Failed to update booking {booking_id}: {exc}") from exc
        return booking

    def mark_events_cancelled(self, booking_id: str, external_ids: Iterable[str]) -> int:
        """Flag event references whose calendar events were removed."""
        wanted = set(external_ids)
        if not wanted:
            return 0
        refs: List[CalendarEventRef] = (
            self.db.query(CalendarEventRef)
            .filter(
                CalendarEventRef.booking_id == booking_id,
                CalendarEventRef.external_id.in_(wanted),
            )
            .all()
        )
        for ref in refs:
            ref.status = CalendarEventStatus.CANCELLED.value
        self.db.flush()
        return len(refs)
