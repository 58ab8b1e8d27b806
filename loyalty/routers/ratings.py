from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import require_admin, require_customer
from loyalty.models.account import Account
from loyalty.schemas.auth import DetailOut
from loyalty.schemas.ratings import MerchantRatingItem, MyRatingItem, RateRequest, RatingListResponse, RatingOut
from loyalty.services import ratings as ratings_service

router = APIRouter(prefix="/ratings", tags=["ratings"])
admin_router = APIRouter(prefix="/admin/ratings", tags=["admin-ratings"])


@router.post("", response_model=RatingOut, status_code=status.HTTP_201_CREATED)
async def rate(
    payload: RateRequest,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    return await ratings_service.rate(
        db,
        customer_account=current_account,
        redemption_id=payload.redemption_id,
        score=payload.score,
    )


@router.get("/me", response_model=list[MyRatingItem])
async def my_ratings(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    rows = await ratings_service.list_mine(db, customer_account=current_account)
    return [
        MyRatingItem(**RatingOut.model_validate(r).model_dump(), merchant_name=m.business_name)
        for r, m in rows
    ]


@router.get("/merchant/{merchant_id}", response_model=RatingListResponse)
async def merchant_ratings(
    merchant_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await ratings_service.list_for_merchant(db, merchant_id=merchant_id, page=page, limit=limit)
    items = [
        MerchantRatingItem(
            **RatingOut.model_validate(r).model_dump(),
            customer_name=c.display_name if c is not None else None,
        )
        for r, c in rows
    ]
    return RatingListResponse(items=items, total=total, page=page, limit=limit)


@admin_router.delete("/{rating_id}", response_model=DetailOut)
async def delete_rating(
    rating_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    await ratings_service.delete_rating(db, rating_id=rating_id)
    return DetailOut(detail="Rating deleted")
