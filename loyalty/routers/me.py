from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import get_current_account, require_customer
from loyalty.models.account import Account, Role
from loyalty.models.customer import CustomerProfile
from loyalty.schemas.accounts import (
    CustomerProfileOut,
    CustomerStatsOut,
    MerchantStatsOut,
    MeOut,
    MeStatsOut,
    MeUpdate,
)
from loyalty.schemas.auth import DetailOut
from loyalty.schemas.merchants import MerchantOut
from loyalty.services import accounts as accounts_service
from loyalty.services import merchants as merchants_service
from loyalty.services.redemptions import customer_stats

router = APIRouter(prefix="/me", tags=["Me"])


async def _me_out(db: AsyncSession, account: Account) -> MeOut:
    res = await db.execute(
        select(CustomerProfile).where(
            CustomerProfile.account_id == account.id,
            CustomerProfile.deleted_at.is_(None),
        )
    )
    profile = res.scalar_one_or_none()
    merchant = await accounts_service.find_merchant_profile(db, account.id)

    return MeOut(
        id=int(account.id),
        email=account.email,
        role=account.role,
        is_email_verified=bool(account.is_email_verified),
        oauth_provider=account.oauth_provider,
        last_login_at=account.last_login_at,
        customer=CustomerProfileOut.model_validate(profile) if profile is not None else None,
        merchant_id=int(merchant.id) if merchant is not None else None,
    )


@router.get("", response_model=MeOut)
async def me(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    return await _me_out(db, current_account)


@router.put("", response_model=MeOut)
async def update_me(
    payload: MeUpdate,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    if payload.email is not None:
        await accounts_service.update_email(db, account=current_account, email=payload.email)

    details = payload.model_dump(exclude_unset=True, exclude={"email"})
    if details and current_account.role == Role.customer.value:
        await accounts_service.update_customer_details(
            db,
            account=current_account,
            first_name=details.get("first_name"),
            last_name=details.get("last_name"),
            phone=details.get("phone"),
        )
    return await _me_out(db, current_account)


@router.delete("", response_model=DetailOut)
async def delete_me(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    await accounts_service.delete_own_account(db, account=current_account)
    return DetailOut(detail="Account deleted")


@router.get("/stats", response_model=MeStatsOut)
async def my_stats(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    out = MeStatsOut()
    if current_account.role == Role.customer.value:
        out.customer = CustomerStatsOut(**await customer_stats(db, customer_account=current_account))

    merchant = await accounts_service.find_merchant_profile(db, current_account.id)
    if merchant is not None:
        out.merchant = MerchantStatsOut(**merchants_service.stats_of(merchant))
    return out


# -------------------------
# Favorites
# -------------------------
@router.get("/favorites", response_model=list[MerchantOut])
async def list_favorites(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    return await merchants_service.list_favorites(db, account=current_account)


@router.post("/favorites/{merchant_id}", response_model=list[int])
async def add_favorite(
    merchant_id: int,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    return await merchants_service.add_favorite(db, account=current_account, merchant_id=merchant_id)


@router.delete("/favorites/{merchant_id}", response_model=list[int])
async def remove_favorite(
    merchant_id: int,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(require_customer),
):
    return await merchants_service.remove_favorite(db, account=current_account, merchant_id=merchant_id)
