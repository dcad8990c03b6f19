# backend/app/routes/v1/quota.py
"""
Quota routes - API v1

Endpoints:
    GET /{account_id} - Current lesson-hour balance
    GET /{account_id}/transactions - Ledger history, newest first
    POST /{account_id}/grants - Admin top-up (idempotent per reference)
"""

import asyncio
import logging

from fastapi import APIRouter, Body, Depends, Query, status

from ...api.dependencies import get_quota_ledger, require_admin
from ...core.exceptions import DomainException
from ...models.quota import QuotaTransactionType
from ...schemas.quota import (
    QuotaBalanceResponse,
    QuotaGrantRequest,
    QuotaGrantResponse,
    QuotaTransactionListResponse,
    QuotaTransactionResponse,
)
from ...services.quota_ledger import QuotaLedger
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quota-v1"])


@router.get("/{account_id}", response_model=QuotaBalanceResponse)
async def get_balance(
    account_id: str,
    ledger: QuotaLedger = Depends(get_quota_ledger),
) -> QuotaBalanceResponse:
    balance = await asyncio.to_thread(ledger.get_balance, account_id)
    return QuotaBalanceResponse(
        account_id=balance.account_id,
        available_hours=balance.available_hours,
        reserved_hours=balance.reserved_hours,
        total_purchased_hours=balance.total_purchased_hours,
    )


@router.get("/{account_id}/transactions", response_model=QuotaTransactionListResponse)
async def list_transactions(
    account_id: str,
    limit: int = Query(50, ge=1, le=500),
    ledger: QuotaLedger = Depends(get_quota_ledger),
) -> QuotaTransactionListResponse:
    transactions = await asyncio.to_thread(ledger.list_transactions, account_id, limit)
    return QuotaTransactionListResponse(
        account_id=account_id,
        items=[QuotaTransactionResponse.model_validate(tx) for tx in transactions],
    )


@router.post(
    "/{account_id}/grants",
    response_model=QuotaGrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_hours(
    account_id: str,
    grant: QuotaGrantRequest = Body(...),
    admin_id: str = Depends(require_admin),
    ledger: QuotaLedger = Depends(get_quota_ledger),
) -> QuotaGrantResponse:
    try:
        result = await asyncio.to_thread(
            ledger.grant,
            account_id,
            grant.hours,
            grant.reference,
            QuotaTransactionType(grant.transaction_type),
        )
    except DomainException as e:
        handle_domain_exception(e)

    logger.info(
        "quota_granted",
        extra={"account_id": account_id, "hours": grant.hours, "granted_by": admin_id, "applied": result.applied},
    )
    return QuotaGrantResponse(
        transaction_id=result.transaction_id,
        applied=result.applied,
        available_hours=result.available_hours,
    )
