# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

The service graph is built once per application by ``build_services`` and
stored on ``app.state.services``; the ``get_*`` functions hand pieces of it
to route handlers.
"""

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from ...core.config import Settings
from ...database import create_db_engine, create_session_factory, init_db
from ...integrations import CalendarClient, FakeCalendarClient, GoogleCalendarClient
from ...repositories.booking_store import SqlAlchemyBookingStore
from ...resilience.registry import ResilienceRegistry
from ...services.booking_notification_service import BookingNotificationService
from ...services.booking_orchestrator import BookingOrchestrator
from ...services.calendar_service import CalendarService
from ...services.conflict_detector import ConflictDetector
from ...services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: SqlAlchemyBookingStore
    resilience: ResilienceRegistry
    calendar: CalendarService
    conflict_detector: ConflictDetector
    quota_ledger: QuotaLedger
    notifications: BookingNotificationService
    orchestrator: BookingOrchestrator


def build_calendar_client(settings: Settings, token_field: str) -> CalendarClient:
    """Real Google client when a token is configured, otherwise the in-memory fake."""
    token = getattr(settings, token_field)
    logger.info(
        "Calendar client selection",
        extra={"environment": settings.environment, "token_field": token_field, "configured": bool(token)},
    )
    if token is not None and token.get_secret_value():
        return GoogleCalendarClient(
            access_token=token,
            base_url=settings.google_calendar_base_url,
            timeout=settings.calendar_timeout_seconds,
        )
    if settings.is_production:
        raise ValueError(f"{token_field.upper()} must be set in production")
    logger.warning(
        "Falling back to FakeCalendarClient: no calendar access token configured",
        extra={"environment": settings.environment, "token_field": token_field},
    )
    return FakeCalendarClient()


def build_services(
    settings: Settings,
    *,
    session_factory: Optional[sessionmaker] = None,
    admin_client: Optional[CalendarClient] = None,
    user_client: Optional[CalendarClient] = None,
    notifications: Optional[BookingNotificationService] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ServiceContainer:
    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)

    if admin_client is None:
        admin_client = build_calendar_client(settings, "google_calendar_access_token")
    if user_client is None:
        if settings.google_calendar_user_access_token is not None:
            user_client = build_calendar_client(settings, "google_calendar_user_access_token")
        else:
            user_client = admin_client

    store = SqlAlchemyBookingStore(session_factory)
    resilience = ResilienceRegistry.from_settings(settings, clock=clock, sleep=sleep)
    calendar = CalendarService(
        admin_client=admin_client,
        user_client=user_client,
        resilience=resilience,
        admin_calendar_id=settings.admin_calendar_id,
    )
    conflict_detector = ConflictDetector(calendar, settings.booking_buffer_minutes)
    quota_ledger = QuotaLedger(store, rounding=settings.booking_hours_rounding)
    notifications = notifications or BookingNotificationService(
        settings.booking_notification_url, timeout=settings.notification_timeout_seconds
    )
    orchestrator = BookingOrchestrator(
        store=store,
        calendar=calendar,
        conflict_detector=conflict_detector,
        quota_ledger=quota_ledger,
        notifications=notifications,
        time_zone=settings.calendar_time_zone,
        cancellation_reason_min_length=settings.cancellation_reason_min_length,
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        resilience=resilience,
        calendar=calendar,
        conflict_detector=conflict_detector,
        quota_ledger=quota_ledger,
        notifications=notifications,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_booking_orchestrator(request: Request) -> BookingOrchestrator:
    return get_services(request).orchestrator


def get_quota_ledger(request: Request) -> QuotaLedger:
    return get_services(request).quota_ledger


def get_resilience_registry(request: Request) -> ResilienceRegistry:
    return get_services(request).resilience
