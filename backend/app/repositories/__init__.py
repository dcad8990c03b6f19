# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the booking platform

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: Bookings and their calendar event references
- QuotaRepository: Quota accounts and ledger transactions
- SqlAlchemyBookingStore: Session-per-call store used by the booking saga
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .booking_store import QuotaDeltaResult, SqlAlchemyBookingStore
from .factory import RepositoryFactory
from .quota_repository import QuotaRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "QuotaDeltaResult",
    "QuotaRepository",
    "RepositoryFactory",
    "SqlAlchemyBookingStore",
]
