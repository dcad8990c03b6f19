# backend/app/schemas/quota.py
"""Quota ledger schemas."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field

from .base import StandardizedModel, StrictRequestModel


class QuotaBalanceResponse(StandardizedModel):
    account_id: str
    available_hours: float
    reserved_hours: float
    total_purchased_hours: float


class QuotaTransactionResponse(StandardizedModel):
    id: str
    account_id: str
    transaction_type: str
    hours_change: float
    booking_id: Optional[str] = None
    reason: Optional[str] = None
    description: str = ""
    created_at: Optional[datetime] = None


class QuotaTransactionListResponse(StandardizedModel):
    account_id: str
    items: List[QuotaTransactionResponse]


class QuotaGrantRequest(StrictRequestModel):
    hours: float = Field(..., gt=0, le=1000)
    reference: str = Field(..., min_length=1, max_length=150)
    transaction_type: Literal["purchase", "adjustment"] = "purchase"


class QuotaGrantResponse(StandardizedModel):
    transaction_id: str
    applied: bool
    available_hours: float


class ResilienceStatusResponse(StandardizedModel):
    dependencies: Dict[str, dict]
