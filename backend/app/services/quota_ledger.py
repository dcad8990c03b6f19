# backend/app/services/quota_ledger.py
"""
Quota Ledger Service for the booking platform

Owns every change to an account's lesson-hour balance:
- Read-only availability pre-checks
- Idempotent consumption tagged with the booking id
- Idempotent compensating credits keyed by booking id and reason
- Top-up grants keyed by a caller reference

All balance changes go through the store's atomic ``apply_quota_delta`` so
the balance can never go below zero, even when a pre-check passed earlier.
"""

from dataclasses import dataclass
import logging
import math
from typing import List, Literal

from ..core.exceptions import ValidationException
from ..models.quota import QuotaTransaction, QuotaTransactionType
from ..repositories.booking_store import QuotaDeltaResult, SqlAlchemyBookingStore
from .base import BaseService

logger = logging.getLogger(__name__)

GRANT_TYPES = (QuotaTransactionType.PURCHASE, QuotaTransactionType.ADJUSTMENT)


@dataclass(frozen=True)
class QuotaCheck:
    ok: bool
    available_hours: float


@dataclass(frozen=True)
class QuotaBalance:
    account_id: str
    available_hours: float
    reserved_hours: float
    total_purchased_hours: float


def consume_key(booking_id: str) -> str:
    return f"booking:{booking_id}"


def credit_key(booking_id: str, reason: str) -> str:
    return f"refund:{booking_id}:{reason}"


class QuotaLedger(BaseService):
    def __init__(self, store: SqlAlchemyBookingStore, rounding: Literal["ceil", "exact"] = "ceil"):
        super().__init__()
        self.store = store
        self.rounding = rounding

    def hours_for_duration(self, duration_minutes: int) -> float:
        """Lesson hours charged for a booking of ``duration_minutes``."""
        if duration_minutes <= 0:
            raise ValidationException("duration_minutes must be positive", code="INVALID_DURATION")
        if self.rounding == "exact":
            return round(duration_minutes / 60, 2)
        return float(math.ceil(duration_minutes / 60))

    @staticmethod
    def _require_positive(hours: float) -> None:
        if hours <= 0:
            raise ValidationException("hours must be positive", code="INVALID_HOURS")

    @BaseService.measure_operation("check_available")
    def check_available(self, account_id: str, hours_needed: float) -> QuotaCheck:
        account = self.store.read_account_quota(account_id)
        available = float(account.available_hours) if account is not None else 0.0
        return QuotaCheck(ok=available >= hours_needed, available_hours=available)

    @BaseService.measure_operation("consume")
    def consume(self, account_id: str, hours: float, booking_id: str) -> QuotaDeltaResult:
        """
        Debit ``hours`` for ``booking_id``.

        A second call with the same booking id returns the first transaction
        and leaves the balance unchanged.

        Raises:
            InsufficientQuotaError: the balance is too low at this instant
        """
        self._require_positive(hours)
        result = self.store.apply_quota_delta(
            account_id,
            -hours,
            QuotaTransactionType.BOOKING,
            booking_id,
            idempotency_key=consume_key(booking_id),
            description=f"Booking {booking_id}",
        )
        if result.applied:
            logger.info(
                "quota_consumed",
                extra={"account_id": account_id, "booking_id": booking_id, "hours": hours},
            )
        return result

    @BaseService.measure_operation("credit")
    def credit(self, account_id: str, hours: float, booking_id: str, reason: str) -> QuotaDeltaResult:
        """Compensating re-credit; applied at most once per booking id and reason."""
        self._require_positive(hours)
        result = self.store.apply_quota_delta(
            account_id,
            hours,
            QuotaTransactionType.REFUND,
            booking_id,
            idempotency_key=credit_key(booking_id, reason),
            reason=reason,
            description=f"Refund for booking {booking_id}: {reason}",
        )
        if result.applied:
            logger.info(
                "quota_credited",
                extra={
                    "account_id": account_id,
                    "booking_id": booking_id,
                    "hours": hours,
                    "reason": reason,
                },
            )
        return result

    @BaseService.measure_operation("grant")
    def grant(
        self,
        account_id: str,
        hours: float,
        reference: str,
        transaction_type: QuotaTransactionType = QuotaTransactionType.PURCHASE,
    ) -> QuotaDeltaResult:
        """Top up an account. Replaying the same ``reference`` is a no-op."""
        self._require_positive(hours)
        transaction_type = QuotaTransactionType(transaction_type)
        if transaction_type not in GRANT_TYPES:
            raise ValidationException(
                f"Unsupported grant type: {transaction_type.value}", code="INVALID_GRANT_TYPE"
            )
        return self.store.apply_quota_delta(
            account_id,
            hours,
            transaction_type,
            idempotency_key=f"{transaction_type.value}:{reference}",
            reason=reference,
            description=f"{transaction_type.value.title()} of {hours} hours",
        )

    def get_balance(self, account_id: str) -> QuotaBalance:
        account = self.store.read_account_quota(account_id)
        if account is None:
            return QuotaBalance(account_id, 0.0, 0.0, 0.0)
        return QuotaBalance(
            account_id=account_id,
            available_hours=float(account.available_hours or 0),
            reserved_hours=float(account.reserved_hours or 0),
            total_purchased_hours=float(account.total_purchased_hours or 0),
        )

    def list_transactions(self, account_id: str, limit: int = 50) -> List[QuotaTransaction]:
        return self.store.list_transactions(account_id, limit)
