# backend/app/repositories/booking_store.py
"""
Persistent store used by the booking saga.

Each public method is one unit of work: it opens its own session, commits on
success and rolls back on failure. A saga step therefore has durably
completed (or durably not happened) by the time the call returns, which is
what the compensation logic relies on.
"""

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from typing import Iterable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import InsufficientQuotaError, RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.quota import QuotaAccount, QuotaTransaction, QuotaTransactionType
from .factory import RepositoryFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDeltaResult:
    """Outcome of one ledger write."""

    transaction_id: str
    applied: bool
    available_hours: float


class SqlAlchemyBookingStore:
    """Bookings and quota ledger backed by SQLAlchemy, one transaction per call."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Store transaction failed: %s", exc)
            raise RepositoryException(f"Database operation failed: {exc}") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Bookings

    def insert_booking(self, booking: Booking) -> Booking:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_booking_repository(db).add(booking)

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_booking_repository(db).get_with_events(booking_id)

    def update_booking_status(
        self,
        booking_id: str,
        status: BookingStatus,
        note: Optional[str] = None,
    ) -> Booking:
        with self._unit_of_work() as db:
            booking = RepositoryFactory.create_booking_repository(db).set_status(
                booking_id, status, note
            )
            if booking is None:
                raise RepositoryException(f"Booking {booking_id} not found")
            return booking

    def mark_event_refs_cancelled(self, booking_id: str, external_ids: Iterable[str]) -> int:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_booking_repository(db).mark_events_cancelled(
                booking_id, external_ids
            )

    # Quota ledger

    def read_account_quota(self, account_id: str) -> Optional[QuotaAccount]:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_quota_repository(db).get_account(account_id)

    def list_transactions(self, account_id: str, limit: int = 50) -> List[QuotaTransaction]:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_quota_repository(db).list_transactions(
                account_id, limit
            )

    def apply_quota_delta(
        self,
        account_id: str,
        delta: float,
        tx_type: QuotaTransactionType,
        booking_id: Optional[str] = None,
        *,
        idempotency_key: str,
        reason: Optional[str] = None,
        description: str = "",
    ) -> QuotaDeltaResult:
        """
        Atomic, idempotent balance change.

        The ledger row and the balance update share one transaction. A replay
        with the same ``idempotency_key`` returns the original transaction and
        leaves the balance untouched; a debit that would go below zero raises
        ``InsufficientQuotaError`` and writes nothing.
        """
        try:
            with self._unit_of_work() as db:
                repo = RepositoryFactory.create_quota_repository(db)

                existing = repo.find_transaction_by_key(idempotency_key)
                if existing is not None:
                    return QuotaDeltaResult(
                        transaction_id=existing.id,
                        applied=False,
                        available_hours=self._available(repo, account_id),
                    )

                if delta >= 0:
                    repo.get_or_create_account(account_id)

                transaction = repo.insert_transaction(
                    account_id=account_id,
                    transaction_type=tx_type.value,
                    hours_change=delta,
                    booking_id=booking_id,
                    reason=reason,
                    description=description,
                    idempotency_key=idempotency_key,
                )

                if repo.apply_balance_change(account_id, delta, tx_type) == 0:
                    raise InsufficientQuotaError(
                        account_id, self._available(repo, account_id), abs(delta)
                    )

                return QuotaDeltaResult(
                    transaction_id=transaction.id,
                    applied=True,
                    available_hours=self._available(repo, account_id),
                )
        except RepositoryException as exc:
            # A concurrent writer with the same key won the unique constraint.
            if isinstance(exc.__cause__, IntegrityError):
                replay = self._find_transaction(idempotency_key)
                if replay is not None:
                    return QuotaDeltaResult(
                        transaction_id=replay.id,
                        applied=False,
                        available_hours=self._available_standalone(account_id),
                    )
            raise

    def _find_transaction(self, idempotency_key: str) -> Optional[QuotaTransaction]:
        with self._unit_of_work() as db:
            return RepositoryFactory.create_quota_repository(db).find_transaction_by_key(
                idempotency_key
            )

    def _available_standalone(self, account_id: str) -> float:
        with self._unit_of_work() as db:
            return self._available(RepositoryFactory.create_quota_repository(db), account_id)

    @staticmethod
    def _available(repo, account_id: str) -> float:
        value = (
            repo.db.query(QuotaAccount.available_hours)
            .filter(QuotaAccount.account_id == account_id)
            .scalar()
        )
        return float(value or 0)
