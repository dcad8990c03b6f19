import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, create_session_factory
from app.integrations.google_calendar_client import FakeCalendarClient
from app.repositories.booking_store import SqlAlchemyBookingStore
from app.resilience.registry import ResilienceRegistry
from app.services.booking_notification_service import BookingNotificationService
from app.services.booking_orchestrator import BookingOrchestrator
from app.services.calendar_service import CalendarService
from app.services.conflict_detector import ConflictDetector
from app.services.quota_ledger import QuotaLedger

# Import models so Base.metadata is populated for reflection/create_all.
import app.models  # noqa: F401


@pytest.fixture
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(_unit_engine) -> sessionmaker:
    """
    Fresh in-memory database per test.

    The store commits per call, so tests get their own engine rather than a
    rolled-back outer transaction.
    """
    return create_session_factory(_unit_engine)


@pytest.fixture
def unit_db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(session_factory) -> SqlAlchemyBookingStore:
    return SqlAlchemyBookingStore(session_factory)


@pytest.fixture
def ledger(store) -> QuotaLedger:
    return QuotaLedger(store)


@pytest.fixture
def fake_calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def resilience(test_settings, fake_clock) -> ResilienceRegistry:
    return ResilienceRegistry.from_settings(test_settings, clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def calendar_service(fake_calendar, resilience) -> CalendarService:
    return CalendarService(
        admin_client=fake_calendar,
        resilience=resilience,
        admin_calendar_id="admin@school.test",
    )


@pytest.fixture
def notifications() -> BookingNotificationService:
    return BookingNotificationService(None)


@pytest.fixture
def orchestrator(store, calendar_service, ledger, notifications) -> BookingOrchestrator:
    return BookingOrchestrator(
        store=store,
        calendar=calendar_service,
        conflict_detector=ConflictDetector(calendar_service, default_buffer_minutes=15),
        quota_ledger=ledger,
        notifications=notifications,
        time_zone="Australia/Sydney",
        cancellation_reason_min_length=10,
    )
