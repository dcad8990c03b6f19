from __future__ import annotations

from datetime import datetime, timezone
import json

import httpx
import pytest

from app.models.booking import Booking
from app.services.booking_notification_service import BookingNotificationService, booking_payload


def _booking() -> Booking:
    return Booking(
        id="01J0000000000000000000000A",
        account_id="student-1",
        start_at=datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc),
        end_at=datetime(2025, 6, 2, 11, 0, tzinfo=timezone.utc),
        duration_minutes=60,
        lesson_type="Highway",
        location="Depot",
        hours_consumed=1.0,
        status="confirmed",
    )


def test_payload_includes_booking_fields_and_extras():
    payload = booking_payload(_booking(), remaining_hours=3.0)

    assert payload["booking_id"] == "01J0000000000000000000000A"
    assert payload["start_at"] == "2025-06-02T10:00:00+00:00"
    assert payload["remaining_hours"] == 3.0


@pytest.mark.asyncio
async def test_confirmation_posts_event_to_webhook():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(202)

    service = BookingNotificationService(
        "https://notify.test/hooks/booking", transport=httpx.MockTransport(handler)
    )

    assert await service.send_booking_confirmation(_booking(), 4.0) is True
    assert captured["url"] == "https://notify.test/hooks/booking"
    assert captured["body"]["event_type"] == "booking_confirmed"
    assert captured["body"]["data"]["remaining_hours"] == 4.0


@pytest.mark.asyncio
async def test_cancellation_carries_reason_and_refund():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    service = BookingNotificationService(
        "https://notify.test/hooks/booking", transport=httpx.MockTransport(handler)
    )

    await service.send_cancellation_notification(_booking(), "Instructor unavailable", "admin-1", 1.0)

    data = bodies[0]["data"]
    assert bodies[0]["event_type"] == "booking_cancelled"
    assert data["reason"] == "Instructor unavailable"
    assert data["cancelled_by"] == "admin-1"
    assert data["hours_refunded"] == 1.0


@pytest.mark.asyncio
async def test_provider_rejection_returns_false():
    service = BookingNotificationService(
        "https://notify.test/hooks/booking",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    assert await service.send_booking_confirmation(_booking(), 4.0) is False


@pytest.mark.asyncio
async def test_unconfigured_delivery_is_skipped():
    assert await BookingNotificationService(None).send_booking_confirmation(_booking(), 4.0) is False
