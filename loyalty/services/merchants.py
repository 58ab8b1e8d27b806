from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.config import settings
from loyalty.core.errors import (
    ImageIndexOutOfRange,
    ImageLimitReached,
    MerchantNotFound,
    MerchantProfileExists,
    MerchantProfileMissing,
    MerchantUnavailable,
)
from loyalty.models.account import Account
from loyalty.models.category import Category
from loyalty.models.merchant import Merchant
from loyalty.models.promotion import Promotion
from loyalty.services import geo
from loyalty.services.accounts import apply_blacklist, clear_blacklist, find_merchant_profile, get_customer_profile
from loyalty.services.aggregates import bump
from loyalty.services.categories import get_category
from loyalty.services.promotions import valid_now

logger = logging.getLogger("uvicorn.error")

DEFAULT_RADIUS_KM = 10.0


def _listed():
    return (
        Merchant.deleted_at.is_(None),
        Merchant.is_active.is_(True),
        Merchant.is_blacklisted.is_(False),
    )


async def get_merchant(db: AsyncSession, merchant_id: int, *, lock: bool = False) -> Merchant:
    stmt = select(Merchant).where(Merchant.id == int(merchant_id), Merchant.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    merchant = res.scalar_one_or_none()
    if not merchant:
        raise MerchantNotFound()
    return merchant


async def get_my_profile(db: AsyncSession, *, account: Account, lock: bool = False) -> Merchant:
    merchant = await find_merchant_profile(db, account.id, lock=lock)
    if not merchant:
        raise MerchantProfileMissing()
    return merchant


# -------------------------
# Owner side
# -------------------------
async def create_profile(db: AsyncSession, *, account: Account, data: dict[str, Any]) -> Merchant:
    if await find_merchant_profile(db, account.id):
        raise MerchantProfileExists()
    await get_category(db, data["category_id"], lock=True)

    values = {"images": [], "opening_hours": {}, **data}
    merchant = Merchant(account_id=account.id, **values)
    db.add(merchant)
    try:
        await db.flush()
        await bump(db, Category, merchant.category_id, merchant_count=1)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        # account_id is unique; a concurrent create lost the race
        raise MerchantProfileExists() from e
    except Exception:
        await db.rollback()
        raise

    await db.refresh(merchant)
    logger.info("merchant profile created id=%s account_id=%s", merchant.id, account.id)
    return merchant


async def _apply_update(db: AsyncSession, merchant: Merchant, data: dict[str, Any]) -> Merchant:
    values = dict(data)
    new_category_id = values.pop("category_id", None)

    try:
        if new_category_id is not None and int(new_category_id) != merchant.category_id:
            await get_category(db, new_category_id, lock=True)
            await bump(db, Category, merchant.category_id, merchant_count=-1)
            await bump(db, Category, new_category_id, merchant_count=1)
            merchant.category_id = int(new_category_id)

        for field, value in values.items():
            setattr(merchant, field, value)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(merchant)
    return merchant


async def update_my_profile(db: AsyncSession, *, account: Account, data: dict[str, Any]) -> Merchant:
    merchant = await get_my_profile(db, account=account)
    return await _apply_update(db, merchant, data)


async def set_opening_hours(db: AsyncSession, *, account: Account, opening_hours: dict) -> Merchant:
    merchant = await get_my_profile(db, account=account)
    merchant.opening_hours = dict(opening_hours)
    await db.commit()
    await db.refresh(merchant)
    return merchant


async def add_image(db: AsyncSession, *, account: Account, url: str) -> Merchant:
    merchant = await get_my_profile(db, account=account, lock=True)
    images = list(merchant.images or [])
    if len(images) >= settings.MAX_MERCHANT_IMAGES:
        await db.rollback()
        raise ImageLimitReached(settings.MAX_MERCHANT_IMAGES)

    # reassign; in-place edits of a JSON column are not tracked
    merchant.images = [*images, url]
    await db.commit()
    await db.refresh(merchant)
    return merchant


async def remove_image(db: AsyncSession, *, account: Account, index: int) -> Merchant:
    merchant = await get_my_profile(db, account=account, lock=True)
    images = list(merchant.images or [])
    if index < 0 or index >= len(images):
        await db.rollback()
        raise ImageIndexOutOfRange()

    del images[index]
    merchant.images = images
    await db.commit()
    await db.refresh(merchant)
    return merchant


def stats_of(merchant: Merchant) -> dict[str, Any]:
    return {
        "total_visits": merchant.total_visits,
        "total_redemptions": merchant.total_redemptions,
        "unique_customers": merchant.unique_customers,
        "rating_average": merchant.rating_average,
        "rating_count": merchant.rating_count,
    }


async def my_stats(db: AsyncSession, *, account: Account) -> dict[str, Any]:
    merchant = await get_my_profile(db, account=account)
    return stats_of(merchant)


# -------------------------
# Public catalog
# -------------------------
async def list_merchants(
    db: AsyncSession,
    *,
    city: str | None = None,
    category_id: int | None = None,
    business_type: str | None = None,
    min_rating: float | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Merchant], int]:
    stmt = select(Merchant).where(*_listed())
    if city:
        stmt = stmt.where(Merchant.city == city)
    if category_id is not None:
        stmt = stmt.where(Merchant.category_id == int(category_id))
    if business_type:
        stmt = stmt.where(Merchant.business_type == business_type)
    if min_rating is not None:
        stmt = stmt.where(Merchant.rating_average >= min_rating)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Merchant.business_name.ilike(pattern), Merchant.short_description.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    stmt = stmt.order_by(Merchant.rating_average.desc(), Merchant.rating_count.desc(), Merchant.id.asc())
    res = await db.execute(stmt.limit(int(limit)).offset((int(page) - 1) * int(limit)))
    return list(res.scalars().all()), int(total)


async def list_by_city(db: AsyncSession, *, city: str, category_id: int | None = None) -> list[Merchant]:
    stmt = select(Merchant).where(*_listed(), Merchant.city == city)
    if category_id is not None:
        stmt = stmt.where(Merchant.category_id == int(category_id))
    res = await db.execute(stmt.order_by(Merchant.rating_average.desc(), Merchant.id.asc()))
    return list(res.scalars().all())


async def search_nearby(
    db: AsyncSession,
    *,
    latitude: float,
    longitude: float,
    radius_km: float = DEFAULT_RADIUS_KM,
    category_id: int | None = None,
) -> list[geo.Nearby[Merchant]]:
    stmt = select(Merchant).where(*_listed())
    if category_id is not None:
        stmt = stmt.where(Merchant.category_id == int(category_id))
    res = await db.execute(stmt.order_by(Merchant.id.asc()))
    return geo.nearby(res.scalars().all(), latitude=latitude, longitude=longitude, radius_km=radius_km)


async def get_public(db: AsyncSession, *, merchant_id: int) -> Merchant:
    """Public detail page. Every successful read counts as one visit."""
    merchant = await get_merchant(db, merchant_id)
    if merchant.is_blacklisted:
        raise MerchantUnavailable()

    await bump(db, Merchant, merchant.id, total_visits=1)
    await db.commit()
    await db.refresh(merchant)
    return merchant


async def active_promotions(db: AsyncSession, *, merchant_id: int) -> list[Promotion]:
    merchant = await get_merchant(db, merchant_id)
    if merchant.is_blacklisted:
        raise MerchantUnavailable()

    res = await db.execute(
        select(Promotion)
        .where(Promotion.merchant_id == merchant.id, Promotion.deleted_at.is_(None), *valid_now(utc_now()))
        .order_by(Promotion.starts_at.desc())
    )
    return list(res.scalars().all())


# -------------------------
# Admin
# -------------------------
async def admin_update(db: AsyncSession, *, merchant_id: int, data: dict[str, Any]) -> Merchant:
    merchant = await get_merchant(db, merchant_id)
    return await _apply_update(db, merchant, data)


async def admin_delete(db: AsyncSession, *, merchant_id: int) -> None:
    merchant = await get_merchant(db, merchant_id)
    try:
        merchant.deleted_at = utc_now()
        merchant.is_active = False
        await bump(db, Category, merchant.category_id, merchant_count=-1)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("merchant soft-deleted id=%s", merchant_id)


async def verify(db: AsyncSession, *, merchant_id: int) -> Merchant:
    merchant = await get_merchant(db, merchant_id)
    merchant.is_verified = True
    await db.commit()
    await db.refresh(merchant)
    return merchant


async def _owner(db: AsyncSession, merchant: Merchant) -> Account | None:
    res = await db.execute(
        select(Account).where(Account.id == merchant.account_id).with_for_update().execution_options(
            populate_existing=True
        )
    )
    return res.scalar_one_or_none()


async def blacklist_merchant(db: AsyncSession, *, merchant_id: int, reason: str | None) -> Merchant:
    """Blacklist the business and the account that owns it, together."""
    merchant = await get_merchant(db, merchant_id, lock=True)
    try:
        merchant.is_blacklisted = True
        merchant.blacklist_reason = reason
        merchant.blacklisted_at = utc_now()
        merchant.is_active = False

        owner = await _owner(db, merchant)
        if owner is not None:
            apply_blacklist(owner, reason)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(merchant)
    logger.info("merchant blacklisted id=%s reason=%r", merchant.id, reason)
    return merchant


async def unblacklist_merchant(db: AsyncSession, *, merchant_id: int) -> Merchant:
    merchant = await get_merchant(db, merchant_id, lock=True)
    try:
        merchant.is_blacklisted = False
        merchant.blacklist_reason = None
        merchant.blacklisted_at = None
        merchant.is_active = True

        owner = await _owner(db, merchant)
        if owner is not None:
            clear_blacklist(owner)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(merchant)
    logger.info("merchant removed from blacklist id=%s", merchant.id)
    return merchant


# -------------------------
# Customer favorites
# -------------------------
async def add_favorite(db: AsyncSession, *, account: Account, merchant_id: int) -> list[int]:
    merchant = await get_merchant(db, merchant_id)
    if not merchant.is_listed:
        raise MerchantUnavailable()

    profile = await get_customer_profile(db, account.id)
    favorites = [int(x) for x in (profile.favorite_merchant_ids or [])]
    if merchant.id not in favorites:
        profile.favorite_merchant_ids = [*favorites, merchant.id]
        await db.commit()
        await db.refresh(profile)
    return list(profile.favorite_merchant_ids)


async def remove_favorite(db: AsyncSession, *, account: Account, merchant_id: int) -> list[int]:
    profile = await get_customer_profile(db, account.id)
    favorites = [int(x) for x in (profile.favorite_merchant_ids or [])]
    if int(merchant_id) in favorites:
        profile.favorite_merchant_ids = [x for x in favorites if x != int(merchant_id)]
        await db.commit()
        await db.refresh(profile)
    return list(profile.favorite_merchant_ids)


async def list_favorites(db: AsyncSession, *, account: Account) -> list[Merchant]:
    profile = await get_customer_profile(db, account.id)
    ids = [int(x) for x in (profile.favorite_merchant_ids or [])]
    if not ids:
        return []

    res = await db.execute(select(Merchant).where(Merchant.id.in_(ids), *_listed()))
    by_id = {m.id: m for m in res.scalars().all()}
    # keep the order in which they were added
    return [by_id[i] for i in ids if i in by_id]
