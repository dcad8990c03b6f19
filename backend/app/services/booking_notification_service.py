# backend/app/services/booking_notification_service.py
"""
Booking Notification Service for the booking platform

Hands booking confirmations and cancellations to the external email
delivery service as a JSON webhook. Delivery is best-effort: callers treat
a False return or a raised error as "not sent" and never let it affect the
booking itself.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..models.booking import Booking
from .base import BaseService

logger = logging.getLogger(__name__)


def booking_payload(booking: Booking, **extra: Any) -> Dict[str, Any]:
    payload = {
        "booking_id": booking.id,
        "account_id": booking.account_id,
        "start_at": booking.start_at.isoformat() if booking.start_at else None,
        "end_at": booking.end_at.isoformat() if booking.end_at else None,
        "duration_minutes": booking.duration_minutes,
        "lesson_type": booking.lesson_type,
        "location": booking.location,
        "hours_consumed": booking.hours_consumed,
    }
    payload.update(extra)
    return payload


class BookingNotificationService(BaseService):
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def _dispatch(self, event_type: str, payload: Dict[str, Any]) -> bool:
        if not self.webhook_url:
            self.logger.info(
                f"Notification delivery not configured; skipping {event_type}",
                extra={"event_type": event_type, "booking_id": payload.get("booking_id")},
            )
            return False

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.webhook_url, json={"event_type": event_type, "data": payload}
            )
        if response.status_code >= 400:
            self.logger.warning(
                f"Notification provider rejected {event_type}: {response.status_code}",
                extra={"event_type": event_type, "status_code": response.status_code},
            )
            return False
        return True

    @BaseService.measure_operation("send_booking_confirmation")
    async def send_booking_confirmation(self, booking: Booking, remaining_hours: float) -> bool:
        return await self._dispatch(
            "booking_confirmed", booking_payload(booking, remaining_hours=remaining_hours)
        )

    @BaseService.measure_operation("send_cancellation_notification")
    async def send_cancellation_notification(
        self,
        booking: Booking,
        reason: str,
        cancelled_by: str,
        hours_refunded: float,
    ) -> bool:
        return await self._dispatch(
            "booking_cancelled",
            booking_payload(
                booking,
                reason=reason,
                cancelled_by=cancelled_by,
                hours_refunded=hours_refunded,
            ),
        )
