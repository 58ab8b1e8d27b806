from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import require_customer, require_merchant
from loyalty.models.account import Account
from loyalty.schemas.accounts import CustomerStatsOut
from loyalty.schemas.redemptions import RedeemRequest, RedemptionHistoryResponse, RedemptionOut
from loyalty.services import redemptions as redemptions_service

router = APIRouter(prefix="/redemptions", tags=["redemptions"])


@router.post("", response_model=RedemptionOut, status_code=status.HTTP_201_CREATED)
async def redeem(
    payload: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await redemptions_service.redeem(
        db,
        qr_token=payload.qr_token,
        promotion_id=payload.promotion_id,
        merchant_account=current_account,
    )


@router.get("/history", response_model=RedemptionHistoryResponse)
async def merchant_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    items, total = await redemptions_service.merchant_history(
        db, merchant_account=current_account, page=page, limit=limit
    )
    return RedemptionHistoryResponse(items=items, total=total, page=page, limit=limit)


@router.get("/me", response_model=RedemptionHistoryResponse)
async def my_redemptions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    items, total = await redemptions_service.customer_history(
        db, customer_account=current_account, page=page, limit=limit
    )
    return RedemptionHistoryResponse(items=items, total=total, page=page, limit=limit)


@router.get("/me/stats", response_model=CustomerStatsOut)
async def my_redemption_stats(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    return CustomerStatsOut(**await redemptions_service.customer_stats(db, customer_account=current_account))
