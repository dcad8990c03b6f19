# backend/app/api/dependencies/auth.py
"""
Identity dependencies.

Authentication happens in the upstream identity provider, which forwards the
caller's account id and role as request headers.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def get_account_id(x_account_id: Optional[str] = Header(None)) -> str:
    """Account making the request."""
    account_id = (x_account_id or "").strip()
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header is required",
        )
    return account_id


def require_admin(
    x_account_id: Optional[str] = Header(None),
    x_account_role: Optional[str] = Header(None),
) -> str:
    """Return the admin's account id, or reject the request."""
    account_id = get_account_id(x_account_id)
    if (x_account_role or "").strip().lower() != ADMIN_ROLE:
        logger.warning("Admin endpoint called without admin role", extra={"account_id": account_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return account_id
