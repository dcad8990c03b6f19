"""
Database models for the driving-school booking platform.

The models are organized by functionality:
- Bookings and the external calendar events that back them
- The lesson-hour quota ledger
"""

from .booking import Booking, BookingStatus, CalendarEventRef, CalendarEventStatus, CalendarOwnerRole
from .quota import QuotaAccount, QuotaTransaction, QuotaTransactionType

__all__ = [
    "Booking",
    "BookingStatus",
    "CalendarEventRef",
    "CalendarEventStatus",
    "CalendarOwnerRole",
    "QuotaAccount",
    "QuotaTransaction",
    "QuotaTransactionType",
]
