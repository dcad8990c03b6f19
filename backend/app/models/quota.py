# backend/app/models/quota.py
"""
Lesson-hour quota ledger models.

``QuotaAccount`` holds the spendable balance of an account. Every change to
it is recorded as a ``QuotaTransaction`` whose ``idempotency_key`` is unique,
so replaying a consumption or a compensating credit never applies twice.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class QuotaTransactionType(str, Enum):
    BOOKING = "booking"
    REFUND = "refund"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"


class QuotaAccount(Base):
    """Spendable lesson-hour balance for one account."""

    __tablename__ = "quota_accounts"

    account_id = Column(String(64), primary_key=True)
    available_hours = Column(Numeric(8, 2, asdecimal=False), nullable=False, default=0)
    reserved_hours = Column(Numeric(8, 2, asdecimal=False), nullable=False, default=0)
    total_purchased_hours = Column(Numeric(8, 2, asdecimal=False), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("available_hours >= 0", name="ck_quota_accounts_available_non_negative"),
        CheckConstraint("reserved_hours >= 0", name="ck_quota_accounts_reserved_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<QuotaAccount {self.account_id} available={self.available_hours}>"


class QuotaTransaction(Base):
    """Audit row for a single balance change."""

    __tablename__ = "quota_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    account_id = Column(String(64), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    hours_change = Column(Numeric(8, 2, asdecimal=False), nullable=False)
    booking_id = Column(String(26), nullable=True)
    reason = Column(String(100), nullable=True)
    description = Column(Text, nullable=False, default="")
    idempotency_key = Column(String(200), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('booking', 'refund', 'purchase', 'adjustment')",
            name="ck_quota_transactions_type",
        ),
        Index("ix_quota_transactions_account_created", "account_id", "created_at"),
        Index("ix_quota_transactions_booking", "booking_id"),
    )
