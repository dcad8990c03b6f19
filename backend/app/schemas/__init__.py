# backend/app/schemas/__init__.py
"""
Pydantic schemas for the booking platform.
"""

from .booking import (
    BookingCancelRequest,
    BookingCancelResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    CalendarEventRefResponse,
)
from .quota import (
    QuotaBalanceResponse,
    QuotaGrantRequest,
    QuotaGrantResponse,
    QuotaTransactionListResponse,
    QuotaTransactionResponse,
    ResilienceStatusResponse,
)

__all__ = [
    "BookingCancelRequest",
    "BookingCancelResponse",
    "BookingCreate",
    "BookingCreateResponse",
    "BookingResponse",
    "CalendarEventRefResponse",
    "QuotaBalanceResponse",
    "QuotaGrantRequest",
    "QuotaGrantResponse",
    "QuotaTransactionListResponse",
    "QuotaTransactionResponse",
    "ResilienceStatusResponse",
]
