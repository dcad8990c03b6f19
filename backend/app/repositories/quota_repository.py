# backend/app/repositories/quota_repository.py
"""
Quota Repository for the lesson-hour ledger.

Balance changes are issued as a single conditional UPDATE so that the
database, not the application, serializes concurrent debits against the
same account.
"""

import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.quota import QuotaAccount, QuotaTransaction, QuotaTransactionType
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class QuotaRepository(BaseRepository[QuotaAccount]):
    """Data access for quota accounts and their ledger transactions."""

    def __init__(self, db: Session):
        super().__init__(db, QuotaAccount)

    def get_account(self, account_id: str) -> Optional[QuotaAccount]:
        return self.get_by_id(account_id)

    def get_or_create_account(self, account_id: str) -> QuotaAccount:
        account = self.get_account(account_id)
        if account is not None:
            return account
        return self.create(
            account_id=account_id,
            available_hours=0,
            reserved_hours=0,
            total_purchased_hours=0,
        )

    def find_transaction_by_key(self, idempotency_key: str) -> Optional[QuotaTransaction]:
        return (
            self.db.query(QuotaTransaction)
            .filter(QuotaTransaction.idempotency_key == idempotency_key)
            .first()
        )

    def insert_transaction(self, **kwargs) -> QuotaTransaction:
        """
        Insert a ledger row and flush.

        IntegrityError is deliberately left to the caller: a duplicate
        idempotency key means another writer already applied this change.
        """
        transaction = QuotaTransaction(**kwargs)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def apply_balance_change(
        self,
        account_id: str,
        hours_change: float,
        transaction_type: QuotaTransactionType,
    ) -> int:
        """
        Apply ``hours_change`` only if the balance stays non-negative.

        Returns:
            Number of rows updated (0 means the balance was insufficient)
        """
        values = {"available_hours": QuotaAccount.available_hours + hours_change}
        if transaction_type == QuotaTransactionType.PURCHASE:
            values["total_purchased_hours"] = QuotaAccount.total_purchased_hours + hours_change

        stmt = (
            update(QuotaAccount)
            .where(
                QuotaAccount.account_id == account_id,
                QuotaAccount.available_hours + hours_change >= 0,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return int(result.rowcount or 0)

    def list_transactions(self, account_id: str, limit: int = 50) -> List[QuotaTransaction]:
        return (
            self.db.query(QuotaTransaction)
            .filter(QuotaTransaction.account_id == account_id)
            .order_by(QuotaTransaction.created_at.desc(), QuotaTransaction.id.desc())
            .limit(limit)
            .all()
        )
