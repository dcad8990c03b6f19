from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.exceptions import InsufficientQuotaError, ValidationException
from app.database import create_db_engine, create_session_factory, init_db
from app.models.quota import QuotaTransaction, QuotaTransactionType
from app.repositories.booking_store import SqlAlchemyBookingStore
from app.services.quota_ledger import QuotaLedger, consume_key, credit_key


class TestHoursForDuration:
    @pytest.mark.parametrize(
        "minutes, hours",
        [(30, 1.0), (60, 1.0), (61, 2.0), (90, 2.0), (120, 2.0)],
    )
    def test_ceil_rounding(self, ledger, minutes, hours):
        assert ledger.hours_for_duration(minutes) == hours

    def test_exact_rounding(self, store):
        ledger = QuotaLedger(store, rounding="exact")

        assert ledger.hours_for_duration(90) == 1.5
        assert ledger.hours_for_duration(50) == 0.83

    @pytest.mark.parametrize("minutes", [0, -15])
    def test_non_positive_duration_rejected(self, ledger, minutes):
        with pytest.raises(ValidationException):
            ledger.hours_for_duration(minutes)


class TestCheckAvailable:
    def test_unknown_account_has_nothing(self, ledger):
        check = ledger.check_available("acct-unknown", 1.0)

        assert check.ok is False
        assert check.available_hours == 0.0

    def test_sufficient_and_insufficient(self, ledger):
        ledger.grant("acct-1", 1.5, "order-1")

        assert ledger.check_available("acct-1", 1.0).ok is True
        assert ledger.check_available("acct-1", 2.0).ok is False

    def test_precheck_does_not_change_balance(self, ledger):
        ledger.grant("acct-1", 3, "order-1")

        ledger.check_available("acct-1", 2.0)

        assert ledger.get_balance("acct-1").available_hours == 3.0


class TestConsumeAndCredit:
    def test_consume_debits_balance(self, ledger):
        ledger.grant("acct-1", 5, "order-1")

        result = ledger.consume("acct-1", 2.0, "booking-1")

        assert result.applied is True
        assert result.available_hours == 3.0

    def test_consume_is_idempotent_per_booking(self, ledger, unit_db):
        ledger.grant("acct-1", 5, "order-1")
        first = ledger.consume("acct-1", 2.0, "booking-1")

        second = ledger.consume("acct-1", 2.0, "booking-1")

        assert second.applied is False
        assert second.transaction_id == first.transaction_id
        assert second.available_hours == 3.0
        assert (
            unit_db.query(QuotaTransaction)
            .filter(QuotaTransaction.idempotency_key == consume_key("booking-1"))
            .count()
            == 1
        )

    def test_consume_beyond_balance_raises_and_writes_nothing(self, ledger, unit_db):
        ledger.grant("acct-1", 1, "order-1")

        with pytest.raises(InsufficientQuotaError) as exc_info:
            ledger.consume("acct-1", 2.0, "booking-1")

        assert exc_info.value.available_hours == 1.0
        assert exc_info.value.requested_hours == 2.0
        assert ledger.get_balance("acct-1").available_hours == 1.0
        assert unit_db.query(QuotaTransaction).filter_by(booking_id="booking-1").count() == 0

    def test_consume_for_unknown_account_raises(self, ledger):
        with pytest.raises(InsufficientQuotaError):
            ledger.consume("acct-missing", 1.0, "booking-1")

    def test_balance_never_goes_negative_across_bookings(self, ledger):
        ledger.grant("acct-1", 3, "order-1")
        outcomes = []

        for i in range(5):
            try:
                ledger.consume("acct-1", 1.0, f"booking-{i}")
                outcomes.append("ok")
            except InsufficientQuotaError:
                outcomes.append("insufficient")

        assert outcomes == ["ok", "ok", "ok", "insufficient", "insufficient"]
        assert ledger.get_balance("acct-1").available_hours == 0.0

    def test_credit_is_idempotent_per_booking_and_reason(self, ledger):
        ledger.grant("acct-1", 2, "order-1")
        ledger.consume("acct-1", 2.0, "booking-1")

        first = ledger.credit("acct-1", 2.0, "booking-1", "saga_rollback")
        replay = ledger.credit("acct-1", 2.0, "booking-1", "saga_rollback")

        assert first.applied is True
        assert replay.applied is False
        assert ledger.get_balance("acct-1").available_hours == 2.0

    def test_credits_with_different_reasons_both_apply(self, ledger):
        ledger.credit("acct-1", 1.0, "booking-1", "saga_rollback")
        ledger.credit("acct-1", 1.0, "booking-1", "admin_cancellation")

        assert ledger.get_balance("acct-1").available_hours == 2.0

    @pytest.mark.parametrize("hours", [0, -1.0])
    def test_non_positive_hours_rejected(self, ledger, hours):
        with pytest.raises(ValidationException):
            ledger.consume("acct-1", hours, "booking-1")
        with pytest.raises(ValidationException):
            ledger.credit("acct-1", hours, "booking-1", "saga_rollback")

    def test_key_formats(self):
        assert consume_key("01ABC") == "booking:01ABC"
        assert credit_key("01ABC", "saga_rollback") == "refund:01ABC:saga_rollback"


class TestGrant:
    def test_grant_creates_account_and_tracks_purchases(self, ledger):
        result = ledger.grant("acct-new", 10, "order-77")

        balance = ledger.get_balance("acct-new")
        assert result.applied is True
        assert balance.available_hours == 10.0
        assert balance.total_purchased_hours == 10.0

    def test_replayed_reference_is_noop(self, ledger):
        ledger.grant("acct-1", 4, "order-1")
        replay = ledger.grant("acct-1", 4, "order-1")

        assert replay.applied is False
        assert ledger.get_balance("acct-1").available_hours == 4.0

    def test_adjustment_does_not_count_as_purchase(self, ledger):
        ledger.grant("acct-1", 2, "manual-fix", QuotaTransactionType.ADJUSTMENT)

        balance = ledger.get_balance("acct-1")
        assert balance.available_hours == 2.0
        assert balance.total_purchased_hours == 0.0

    def test_booking_type_is_not_a_grant(self, ledger):
        with pytest.raises(ValidationException):
            ledger.grant("acct-1", 2, "sneaky", QuotaTransactionType.BOOKING)

    def test_list_transactions_for_account(self, ledger):
        ledger.grant("acct-1", 4, "order-1")
        ledger.consume("acct-1", 1.0, "booking-1")
        ledger.grant("acct-2", 4, "order-2")

        transactions = ledger.list_transactions("acct-1")

        assert sorted(t.transaction_type for t in transactions) == ["booking", "purchase"]
        assert ledger.list_transactions("acct-1", limit=1)[0].account_id == "acct-1"


def test_unknown_account_balance_is_zero(ledger):
    balance = ledger.get_balance("nobody")

    assert (balance.available_hours, balance.reserved_hours, balance.total_purchased_hours) == (
        0.0,
        0.0,
        0.0,
    )


def test_concurrent_consumption_never_overdraws(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    ledger = QuotaLedger(SqlAlchemyBookingStore(create_session_factory(engine)))
    ledger.grant("acct-1", 3, "order-1")

    def attempt(i: int) -> str:
        try:
            ledger.consume("acct-1", 1.0, f"booking-{i}")
            return "ok"
        except InsufficientQuotaError:
            return "insufficient"

    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(10)))

        assert outcomes.count("ok") == 3
        assert outcomes.count("insufficient") == 7
        assert ledger.get_balance("acct-1").available_hours == 0.0
    finally:
        engine.dispose()
