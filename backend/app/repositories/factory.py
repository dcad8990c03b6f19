# backend/app/repositories/factory.py
"""
Repository Factory for the booking platform

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .quota_repository import QuotaRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking persistence."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_quota_repository(db: Session) -> "QuotaRepository":
        """Create repository for the quota ledger."""
        from .quota_repository import QuotaRepository

        return QuotaRepository(db)
