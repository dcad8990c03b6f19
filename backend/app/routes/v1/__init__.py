# backend/app/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import bookings, prometheus, quota, resilience

__all__ = [
    "bookings",
    "prometheus",
    "quota",
    "resilience",
]
