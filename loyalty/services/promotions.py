from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import as_utc, utc_now
from loyalty.core.errors import InvalidPromotionWindow, MerchantProfileMissing, PromotionNotFound
from loyalty.models.account import Account
from loyalty.models.merchant import Merchant
from loyalty.models.promotion import Promotion
from loyalty.services.accounts import find_merchant_profile

logger = logging.getLogger("uvicorn.error")


def valid_now(now: datetime):
    """WHERE clauses matching ``Promotion.is_valid(now)``."""
    return (
        Promotion.is_active.is_(True),
        Promotion.starts_at <= now,
        Promotion.ends_at >= now,
    )


def is_valid(promotion: Promotion, now: datetime | None = None) -> bool:
    return promotion.is_valid(now or utc_now())


def days_remaining(promotion: Promotion, now: datetime | None = None) -> int:
    return promotion.days_remaining(now or utc_now())


def _check_window(starts_at: datetime, ends_at: datetime) -> None:
    if as_utc(ends_at) <= as_utc(starts_at):
        raise InvalidPromotionWindow()


async def _own_merchant(db: AsyncSession, account: Account) -> Merchant:
    merchant = await find_merchant_profile(db, account.id)
    if not merchant:
        raise MerchantProfileMissing()
    return merchant


async def get_promotion(db: AsyncSession, promotion_id: int, *, merchant_id: int | None = None) -> Promotion:
    stmt = select(Promotion).where(Promotion.id == int(promotion_id), Promotion.deleted_at.is_(None))
    if merchant_id is not None:
        stmt = stmt.where(Promotion.merchant_id == int(merchant_id))
    res = await db.execute(stmt)
    promotion = res.scalar_one_or_none()
    if not promotion:
        raise PromotionNotFound()
    return promotion


async def create_promotion(db: AsyncSession, *, account: Account, data: dict[str, Any]) -> Promotion:
    merchant = await _own_merchant(db, account)
    _check_window(data["starts_at"], data["ends_at"])

    promotion = Promotion(merchant_id=merchant.id, usage_count=0, unique_customers=0, **data)
    db.add(promotion)
    await db.commit()
    await db.refresh(promotion)
    logger.info("promotion created id=%s merchant_id=%s", promotion.id, merchant.id)
    return promotion


async def update_promotion(
    db: AsyncSession,
    *,
    account: Account,
    promotion_id: int,
    data: dict[str, Any],
) -> Promotion:
    merchant = await _own_merchant(db, account)
    promotion = await get_promotion(db, promotion_id, merchant_id=merchant.id)

    _check_window(data.get("starts_at") or promotion.starts_at, data.get("ends_at") or promotion.ends_at)
    for field, value in data.items():
        setattr(promotion, field, value)

    await db.commit()
    await db.refresh(promotion)
    return promotion


async def delete_promotion(db: AsyncSession, *, account: Account, promotion_id: int) -> None:
    merchant = await _own_merchant(db, account)
    promotion = await get_promotion(db, promotion_id, merchant_id=merchant.id)
    promotion.deleted_at = utc_now()
    promotion.is_active = False
    await db.commit()
    logger.info("promotion deleted id=%s by merchant_id=%s", promotion_id, merchant.id)


async def admin_delete_promotion(db: AsyncSession, *, promotion_id: int) -> None:
    promotion = await get_promotion(db, promotion_id)
    promotion.deleted_at = utc_now()
    promotion.is_active = False
    await db.commit()
    logger.info("promotion deleted id=%s by admin", promotion_id)


async def list_mine(db: AsyncSession, *, account: Account) -> list[Promotion]:
    merchant = await _own_merchant(db, account)
    res = await db.execute(
        select(Promotion)
        .where(Promotion.merchant_id == merchant.id, Promotion.deleted_at.is_(None))
        .order_by(Promotion.created_at.desc(), Promotion.id.desc())
    )
    return list(res.scalars().all())


async def list_active(
    db: AsyncSession,
    *,
    city: str | None = None,
    category_id: int | None = None,
) -> list[Promotion]:
    """Promotions valid right now at merchants that are active and not blacklisted."""
    stmt = (
        select(Promotion)
        .join(Merchant, Merchant.id == Promotion.merchant_id)
        .where(
            Promotion.deleted_at.is_(None),
            *valid_now(utc_now()),
            Merchant.deleted_at.is_(None),
            Merchant.is_active.is_(True),
            Merchant.is_blacklisted.is_(False),
        )
    )
    if city:
        stmt = stmt.where(Merchant.city == city)
    if category_id is not None:
        stmt = stmt.where(Merchant.category_id == int(category_id))

    res = await db.execute(stmt.order_by(Promotion.starts_at.desc(), Promotion.id.desc()))
    return list(res.scalars().all())
