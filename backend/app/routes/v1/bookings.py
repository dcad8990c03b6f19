# backend/app/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingOrchestrator.

Endpoints:
    POST / - Book a lesson (runs the booking saga)
    POST /{booking_id}/cancel - Admin cancellation with refund
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status

from ...api.dependencies import get_account_id, get_booking_orchestrator, require_admin
from ...core.exceptions import DomainException
from ...schemas.booking import (
    BookingCancelRequest,
    BookingCancelResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    CalendarEventRefResponse,
)
from ...services.booking_orchestrator import BookingCommand, BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "",
    response_model=BookingCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid request or insufficient quota"},
        409: {"description": "Slot unavailable"},
        503: {"description": "Calendar service unavailable"},
    },
)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    account_id: str = Depends(get_account_id),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingCreateResponse:
    """Book a lesson: conflict check, quota check, calendar events, persist, consume."""
    command = BookingCommand.build(
        account_id,
        booking_data.start_at,
        end_at=booking_data.end_at,
        duration_minutes=booking_data.duration_minutes,
        lesson_type=booking_data.lesson_type,
        location=booking_data.location,
        notes=booking_data.notes,
        user_calendar_id=booking_data.user_calendar_id,
        buffer_minutes=booking_data.buffer_minutes,
    )
    try:
        result = await orchestrator.create_booking(command)
    except DomainException as e:
        handle_domain_exception(e)

    return BookingCreateResponse(
        status=result.status,
        booking=BookingResponse.model_validate(result.booking),
        events=[CalendarEventRefResponse.model_validate(ref) for ref in result.events],
        remaining_hours=result.remaining_hours,
    )


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingCancelResponse,
    responses={404: {"description": "Booking not found"}},
)
async def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    cancel_data: BookingCancelRequest = Body(...),
    admin_id: str = Depends(require_admin),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingCancelResponse:
    """Cancel a booking as an admin and refund the consumed hours."""
    try:
        result = await orchestrator.cancel_booking(
            booking_id, cancel_data.reason, cancel_data.cancelled_by or admin_id
        )
    except DomainException as e:
        handle_domain_exception(e)

    return BookingCancelResponse(
        booking=BookingResponse.model_validate(result.booking),
        hours_refunded=result.hours_refunded,
        remaining_hours=result.remaining_hours,
        events_cancelled=result.events_cancelled,
        events_failed=result.events_failed,
    )
