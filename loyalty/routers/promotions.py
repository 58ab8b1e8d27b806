from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.db import get_db
from loyalty.core.deps import require_admin, require_merchant
from loyalty.models.account import Account
from loyalty.models.promotion import Promotion
from loyalty.schemas.auth import DetailOut
from loyalty.schemas.promotions import PromotionCreate, PromotionOut, PromotionUpdate
from loyalty.services import promotions as promotions_service

router = APIRouter(prefix="/promotions", tags=["promotions"])
admin_router = APIRouter(prefix="/admin/promotions", tags=["admin-promotions"])


def promotion_out(promotion: Promotion) -> PromotionOut:
    now = utc_now()
    return PromotionOut(
        id=promotion.id,
        merchant_id=promotion.merchant_id,
        title=promotion.title,
        description=promotion.description,
        starts_at=promotion.starts_at,
        ends_at=promotion.ends_at,
        is_active=promotion.is_active,
        usage_count=promotion.usage_count,
        unique_customers=promotion.unique_customers,
        created_at=promotion.created_at,
        is_valid=promotion.is_valid(now),
        days_remaining=promotion.days_remaining(now),
    )


@router.get("", response_model=list[PromotionOut])
async def list_active(
    city: Optional[str] = Query(default=None),
    category_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    items = await promotions_service.list_active(db, city=city, category_id=category_id)
    return [promotion_out(p) for p in items]


# must stay above /{promotion_id}
@router.get("/mine", response_model=list[PromotionOut])
async def list_mine(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    items = await promotions_service.list_mine(db, account=current_account)
    return [promotion_out(p) for p in items]


@router.get("/{promotion_id}", response_model=PromotionOut)
async def get_promotion(promotion_id: int, db: AsyncSession = Depends(get_db)):
    return promotion_out(await promotions_service.get_promotion(db, promotion_id))


@router.post("", response_model=PromotionOut, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    payload: PromotionCreate,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    promotion = await promotions_service.create_promotion(db, account=current_account, data=payload.model_dump())
    return promotion_out(promotion)


@router.put("/{promotion_id}", response_model=PromotionOut)
async def update_promotion(
    promotion_id: int,
    payload: PromotionUpdate,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    promotion = await promotions_service.update_promotion(
        db,
        account=current_account,
        promotion_id=promotion_id,
        data=payload.model_dump(exclude_unset=True),
    )
    return promotion_out(promotion)


@router.delete("/{promotion_id}", response_model=DetailOut)
async def delete_promotion(
    promotion_id: int,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    await promotions_service.delete_promotion(db, account=current_account, promotion_id=promotion_id)
    return DetailOut(detail="Promotion deleted")


@admin_router.delete("/{promotion_id}", response_model=DetailOut)
async def admin_delete_promotion(
    promotion_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    await promotions_service.admin_delete_promotion(db, promotion_id=promotion_id)
    return DetailOut(detail="Promotion deleted")
