from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import InsufficientQuotaError, RepositoryException
from app.models.booking import Booking, BookingStatus, CalendarEventRef
from app.models.quota import QuotaTransactionType
from app.repositories.booking_repository import append_note
from app.repositories.booking_store import SqlAlchemyBookingStore

START = datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc)
END = datetime(2025, 6, 2, 11, 0, tzinfo=timezone.utc)


def _booking(booking_id: str = "01J0000000000000000000000A") -> Booking:
    booking = Booking(
        id=booking_id,
        account_id="student-1",
        start_at=START,
        end_at=END,
        duration_minutes=60,
        lesson_type="Standard",
        location="TBD",
        notes="First lesson",
        hours_consumed=1.0,
        status=BookingStatus.PENDING.value,
    )
    for role, calendar_id, external_id in (
        ("admin", "admin@school.test", "evt_admin"),
        ("user", "primary", "evt_user"),
    ):
        booking.external_event_refs.append(
            CalendarEventRef(
                owner_role=role,
                calendar_id=calendar_id,
                external_id=external_id,
                start_at=START,
                end_at=END,
            )
        )
    return booking


class TestBookings:
    def test_insert_and_get_with_refs(self, store):
        store.insert_booking(_booking())

        loaded = store.get_booking("01J0000000000000000000000A")

        assert loaded.status == "pending"
        assert [ref.external_id for ref in loaded.external_event_refs] == ["evt_admin", "evt_user"]
        assert all(ref.status == "active" for ref in loaded.external_event_refs)

    def test_get_missing_booking(self, store):
        assert store.get_booking("nope") is None

    def test_status_update_appends_note(self, store):
        store.insert_booking(_booking())

        confirmed = store.update_booking_status("01J0000000000000000000000A", BookingStatus.CONFIRMED)
        cancelled = store.update_booking_status(
            "01J0000000000000000000000A", BookingStatus.CANCELLED, "Quota consumption failed"
        )

        assert confirmed.confirmed_at is not None
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert cancelled.notes == "First lesson\nQuota consumption failed"

    def test_status_update_for_missing_booking_raises(self, store):
        with pytest.raises(RepositoryException):
            store.update_booking_status("nope", BookingStatus.CANCELLED)

    def test_mark_event_refs_cancelled(self, store):
        store.insert_booking(_booking())

        count = store.mark_event_refs_cancelled("01J0000000000000000000000A", ["evt_user", "evt_other"])

        loaded = store.get_booking("01J0000000000000000000000A")
        assert count == 1
        assert [ref.external_id for ref in loaded.active_event_refs()] == ["evt_admin"]
        assert store.mark_event_refs_cancelled("01J0000000000000000000000A", []) == 0

    def test_duplicate_insert_wrapped_and_rolled_back(self, store):
        store.insert_booking(_booking())

        with pytest.raises(RepositoryException):
            store.insert_booking(_booking())

        assert store.get_booking("01J0000000000000000000000A").status == "pending"

    def test_commit_failure_rolls_back_and_wraps(self):
        session = MagicMock()
        session.get.return_value = None
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))

        with pytest.raises(RepositoryException):
            SqlAlchemyBookingStore(lambda: session).read_account_quota("student-1")

        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_query_failure_surfaces_as_repository_exception(self):
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(RepositoryException):
            SqlAlchemyBookingStore(lambda: session).read_account_quota("student-1")

        session.commit.assert_not_called()


class TestQuotaDelta:
    def test_credit_creates_account(self, store):
        result = store.apply_quota_delta(
            "student-1", 3.0, QuotaTransactionType.PURCHASE, idempotency_key="purchase:o-1"
        )

        account = store.read_account_quota("student-1")
        assert result.applied is True
        assert result.available_hours == 3.0
        assert account.total_purchased_hours == 3.0

    def test_refund_does_not_count_as_purchase(self, store):
        store.apply_quota_delta(
            "student-1", 2.0, QuotaTransactionType.REFUND, "b-1", idempotency_key="refund:b-1:x"
        )

        assert store.read_account_quota("student-1").total_purchased_hours == 0.0

    def test_debit_below_zero_raises_and_leaves_no_trace(self, store):
        store.apply_quota_delta("student-1", 1.0, QuotaTransactionType.PURCHASE, idempotency_key="p:1")

        with pytest.raises(InsufficientQuotaError):
            store.apply_quota_delta(
                "student-1", -1.5, QuotaTransactionType.BOOKING, "b-1", idempotency_key="booking:b-1"
            )

        assert store.read_account_quota("student-1").available_hours == 1.0
        assert [t.idempotency_key for t in store.list_transactions("student-1")] == ["p:1"]

    def test_replay_returns_original_transaction(self, store):
        store.apply_quota_delta("student-1", 5.0, QuotaTransactionType.PURCHASE, idempotency_key="p:1")
        first = store.apply_quota_delta(
            "student-1", -1.0, QuotaTransactionType.BOOKING, "b-1", idempotency_key="booking:b-1"
        )

        replay = store.apply_quota_delta(
            "student-1", -1.0, QuotaTransactionType.BOOKING, "b-1", idempotency_key="booking:b-1"
        )

        assert replay.applied is False
        assert replay.transaction_id == first.transaction_id
        assert replay.available_hours == 4.0

    def test_transaction_fields_recorded(self, store):
        store.apply_quota_delta(
            "student-1",
            2.0,
            QuotaTransactionType.REFUND,
            "b-9",
            idempotency_key="refund:b-9:admin_cancellation",
            reason="admin_cancellation",
            description="Refund for booking b-9: admin_cancellation",
        )

        (tx,) = store.list_transactions("student-1")
        assert tx.transaction_type == "refund"
        assert tx.hours_change == 2.0
        assert tx.booking_id == "b-9"
        assert tx.reason == "admin_cancellation"


@pytest.mark.parametrize(
    "existing, note, expected",
    [
        (None, None, None),
        ("Notes", None, "Notes"),
        (None, "Cancelled", "Cancelled"),
        ("Notes", "Cancelled", "Notes\nCancelled"),
    ],
)
def test_append_note(existing, note, expected):
    assert append_note(existing, note) == expected
