# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .auth import get_account_id, require_admin
from .services import (
    ServiceContainer,
    build_services,
    get_booking_orchestrator,
    get_quota_ledger,
    get_resilience_registry,
    get_services,
)

__all__ = [
    # Identity
    "get_account_id",
    "require_admin",
    # Services
    "ServiceContainer",
    "build_services",
    "get_booking_orchestrator",
    "get_quota_ledger",
    "get_resilience_registry",
    "get_services",
]
