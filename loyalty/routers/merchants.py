from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import require_admin, require_merchant
from loyalty.models.account import Account
from loyalty.routers.promotions import promotion_out
from loyalty.schemas.accounts import BlacklistRequest, MerchantStatsOut
from loyalty.schemas.auth import DetailOut
from loyalty.schemas.merchants import (
    AdminMerchantUpdate,
    ImageIn,
    MerchantCreate,
    MerchantDetailOut,
    MerchantListResponse,
    MerchantOut,
    MerchantUpdate,
    NearbyMerchantOut,
    NearbyResponse,
    OpeningHoursIn,
)
from loyalty.schemas.promotions import PromotionOut
from loyalty.services import merchants as merchants_service

router = APIRouter(prefix="/merchants", tags=["merchants"])
admin_router = APIRouter(prefix="/admin/merchants", tags=["admin-merchants"])


# -------------------------
# Public
# -------------------------
@router.get("", response_model=MerchantListResponse)
async def list_merchants(
    city: Optional[str] = Query(default=None),
    category_id: Optional[int] = Query(default=None),
    business_type: Optional[str] = Query(default=None),
    min_rating: Optional[float] = Query(default=None, ge=0, le=5),
    search: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    items, total = await merchants_service.list_merchants(
        db,
        city=city,
        category_id=category_id,
        business_type=business_type,
        min_rating=min_rating,
        search=search,
        page=page,
        limit=limit,
    )
    return MerchantListResponse(
        items=[MerchantOut.model_validate(m) for m in items],
        total=total,
        page=page,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/nearby", response_model=NearbyResponse)
async def search_nearby(
    latitude: float = Query(ge=-90, le=90),
    longitude: float = Query(ge=-180, le=180),
    radius_km: float = Query(default=merchants_service.DEFAULT_RADIUS_KM, gt=0, le=500),
    category_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    hits = await merchants_service.search_nearby(
        db, latitude=latitude, longitude=longitude, radius_km=radius_km, category_id=category_id
    )
    return NearbyResponse(
        latitude=latitude,
        longitude=longitude,
        radius_km=radius_km,
        total=len(hits),
        items=[NearbyMerchantOut(merchant=MerchantOut.model_validate(h.item), distance_km=h.distance_km) for h in hits],
    )


@router.get("/city/{city}", response_model=list[MerchantOut])
async def list_by_city(
    city: str,
    category_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await merchants_service.list_by_city(db, city=city, category_id=category_id)


# -------------------------
# Owner (declared before /{merchant_id})
# -------------------------
@router.post("", response_model=MerchantOut, status_code=status.HTTP_201_CREATED)
async def create_profile(
    payload: MerchantCreate,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.create_profile(db, account=current_account, data=payload.model_dump())


@router.get("/me", response_model=MerchantOut)
async def get_my_profile(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.get_my_profile(db, account=current_account)


@router.put("/me", response_model=MerchantOut)
async def update_my_profile(
    payload: MerchantUpdate,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.update_my_profile(
        db, account=current_account, data=payload.model_dump(exclude_unset=True)
    )


@router.put("/me/hours", response_model=MerchantOut)
async def set_opening_hours(
    payload: OpeningHoursIn,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.set_opening_hours(db, account=current_account, opening_hours=payload.opening_hours)


@router.post("/me/images", response_model=MerchantOut)
async def add_image(
    payload: ImageIn,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.add_image(db, account=current_account, url=payload.url)


@router.delete("/me/images/{index}", response_model=MerchantOut)
async def remove_image(
    index: int,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return await merchants_service.remove_image(db, account=current_account, index=index)


@router.get("/me/stats", response_model=MerchantStatsOut)
async def my_stats(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_merchant),
):
    return MerchantStatsOut(**await merchants_service.my_stats(db, account=current_account))


# -------------------------
# Public detail
# -------------------------
@router.get("/{merchant_id}", response_model=MerchantDetailOut)
async def get_merchant(merchant_id: int, db: AsyncSession = Depends(get_db)):
    merchant = await merchants_service.get_public(db, merchant_id=merchant_id)
    promotions = await merchants_service.active_promotions(db, merchant_id=merchant.id)

    out = MerchantDetailOut.model_validate(merchant)
    out.promotions = [promotion_out(p) for p in promotions]
    return out


@router.get("/{merchant_id}/promotions", response_model=list[PromotionOut])
async def merchant_promotions(merchant_id: int, db: AsyncSession = Depends(get_db)):
    promotions = await merchants_service.active_promotions(db, merchant_id=merchant_id)
    return [promotion_out(p) for p in promotions]


# -------------------------
# Admin
# -------------------------
@admin_router.put("/{merchant_id}", response_model=MerchantOut)
async def admin_update(
    merchant_id: int,
    payload: AdminMerchantUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await merchants_service.admin_update(
        db, merchant_id=merchant_id, data=payload.model_dump(exclude_unset=True)
    )


@admin_router.delete("/{merchant_id}", response_model=DetailOut)
async def admin_delete(
    merchant_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    await merchants_service.admin_delete(db, merchant_id=merchant_id)
    return DetailOut(detail="Merchant deleted")


@admin_router.post("/{merchant_id}/verify", response_model=MerchantOut)
async def verify_merchant(
    merchant_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await merchants_service.verify(db, merchant_id=merchant_id)


@admin_router.post("/{merchant_id}/blacklist", response_model=MerchantOut)
async def blacklist_merchant(
    merchant_id: int,
    payload: BlacklistRequest,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await merchants_service.blacklist_merchant(db, merchant_id=merchant_id, reason=payload.reason)


@admin_router.delete("/{merchant_id}/blacklist", response_model=MerchantOut)
async def unblacklist_merchant(
    merchant_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await merchants_service.unblacklist_merchant(db, merchant_id=merchant_id)
