"""
Redemption engine.

A redemption is a merchant scanning a customer's QR code against one of its
own promotions. Per (customer, promotion) the only transition is
Unredeemed -> Redeemed; the unique constraint
``uq_redemptions_customer_promotion`` is the final word on it, the
existence check before the insert only gives the common case a clean error.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.db import is_unique_violation
from loyalty.core.errors import (
    AlreadyRedeemed,
    CustomerBlacklisted,
    MerchantProfileMissing,
    PromotionNotValid,
    UnknownQrCode,
)
from loyalty.models.account import Account
from loyalty.models.customer import CustomerProfile
from loyalty.models.merchant import Merchant
from loyalty.models.promotion import Promotion
from loyalty.models.redemption import Redemption
from loyalty.services.accounts import find_merchant_profile, get_customer_profile
from loyalty.services.aggregates import bump
from loyalty.services.promotions import get_promotion

logger = logging.getLogger("uvicorn.error")

REDEMPTION_CONSTRAINT = "uq_redemptions_customer_promotion"


async def _customer_by_qr(db: AsyncSession, qr_token: str) -> tuple[CustomerProfile, Account]:
    res = await db.execute(
        select(CustomerProfile, Account)
        .join(Account, Account.id == CustomerProfile.account_id)
        .where(
            CustomerProfile.qr_token == (qr_token or "").strip(),
            CustomerProfile.deleted_at.is_(None),
            Account.deleted_at.is_(None),
        )
    )
    row = res.first()
    if row is None:
        raise UnknownQrCode()
    return row[0], row[1]


async def has_redeemed(db: AsyncSession, *, customer_account_id: int, promotion_id: int) -> bool:
    res = await db.execute(
        select(Redemption.id).where(
            Redemption.customer_account_id == int(customer_account_id),
            Redemption.promotion_id == int(promotion_id),
        )
    )
    return res.first() is not None


async def _visits_at_merchant(db: AsyncSession, *, customer_account_id: int, merchant_id: int) -> int:
    res = await db.execute(
        select(func.count(Redemption.id)).where(
            Redemption.customer_account_id == int(customer_account_id),
            Redemption.merchant_id == int(merchant_id),
        )
    )
    return int(res.scalar_one())


async def redeem(db: AsyncSession, *, qr_token: str, promotion_id: int, merchant_account: Account) -> Redemption:
    profile, customer = await _customer_by_qr(db, qr_token)
    if customer.is_blacklisted:
        raise CustomerBlacklisted()

    merchant = await find_merchant_profile(db, merchant_account.id)
    if not merchant:
        raise MerchantProfileMissing()

    # scoped to the acting merchant: another merchant's promotion is "not found"
    promotion = await get_promotion(db, promotion_id, merchant_id=merchant.id)
    if not promotion.is_valid(utc_now()):
        raise PromotionNotValid()

    if await has_redeemed(db, customer_account_id=customer.id, promotion_id=promotion.id):
        raise AlreadyRedeemed()

    # rollback expires loaded instances; keep plain ids for logging
    customer_id, target_id = customer.id, promotion.id

    try:
        # same-merchant redemptions queue on the merchant row, so the visit count below is exact
        await find_merchant_profile(db, merchant_account.id, lock=True)
        first_visit = (
            await _visits_at_merchant(db, customer_account_id=customer.id, merchant_id=merchant.id)
        ) == 0

        redemption = Redemption(
            customer_account_id=customer.id,
            merchant_id=merchant.id,
            promotion_id=promotion.id,
            redeemed_at=utc_now(),
            rated=False,
        )
        db.add(redemption)
        await db.flush()

        await bump(
            db,
            Merchant,
            merchant.id,
            total_redemptions=1,
            unique_customers=1 if first_visit else 0,
        )
        # a first redemption of this promotion by this customer, by construction
        await bump(db, Promotion, promotion.id, usage_count=1, unique_customers=1)
        await bump(db, CustomerProfile, profile.id, scans_count=1)

        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if is_unique_violation(e, REDEMPTION_CONSTRAINT, "customer_account_id", "promotion_id"):
            logger.warning(
                "concurrent duplicate redemption rejected customer_id=%s promotion_id=%s",
                customer_id,
                target_id,
            )
            raise AlreadyRedeemed() from e
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(redemption)
    logger.info(
        "redemption recorded id=%s customer_id=%s merchant_id=%s promotion_id=%s",
        redemption.id,
        customer.id,
        merchant.id,
        promotion.id,
    )
    return redemption


# -------------------------
# Reads
# -------------------------
def _history_row(redemption: Redemption, promotion: Promotion, **extra: Any) -> dict[str, Any]:
    return {
        "id": redemption.id,
        "customer_account_id": redemption.customer_account_id,
        "merchant_id": redemption.merchant_id,
        "promotion_id": redemption.promotion_id,
        "promotion_title": promotion.title,
        "redeemed_at": redemption.redeemed_at,
        "rated": redemption.rated,
        **extra,
    }


async def merchant_history(
    db: AsyncSession,
    *,
    merchant_account: Account,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[dict[str, Any]], int]:
    merchant = await find_merchant_profile(db, merchant_account.id)
    if not merchant:
        raise MerchantProfileMissing()

    total = (
        await db.execute(select(func.count(Redemption.id)).where(Redemption.merchant_id == merchant.id))
    ).scalar_one()

    res = await db.execute(
        select(Redemption, Promotion, CustomerProfile)
        .join(Promotion, Promotion.id == Redemption.promotion_id)
        .outerjoin(CustomerProfile, CustomerProfile.account_id == Redemption.customer_account_id)
        .where(Redemption.merchant_id == merchant.id)
        .order_by(Redemption.redeemed_at.desc(), Redemption.id.desc())
        .limit(int(limit))
        .offset((int(page) - 1) * int(limit))
    )
    items = [
        _history_row(r, p, customer_name=c.display_name if c is not None else None)
        for r, p, c in res.all()
    ]
    return items, int(total)


async def customer_history(
    db: AsyncSession,
    *,
    customer_account: Account,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[dict[str, Any]], int]:
    total = (
        await db.execute(
            select(func.count(Redemption.id)).where(Redemption.customer_account_id == customer_account.id)
        )
    ).scalar_one()

    res = await db.execute(
        select(Redemption, Promotion, Merchant)
        .join(Promotion, Promotion.id == Redemption.promotion_id)
        .join(Merchant, Merchant.id == Redemption.merchant_id)
        .where(Redemption.customer_account_id == customer_account.id)
        .order_by(Redemption.redeemed_at.desc(), Redemption.id.desc())
        .limit(int(limit))
        .offset((int(page) - 1) * int(limit))
    )
    items = [_history_row(r, p, merchant_name=m.business_name) for r, p, m in res.all()]
    return items, int(total)


async def customer_stats(db: AsyncSession, *, customer_account: Account) -> dict[str, int]:
    profile = await get_customer_profile(db, customer_account.id)
    return {
        "scans_count": profile.scans_count,
        "ratings_given_count": profile.ratings_given_count,
        "favorites_count": len(profile.favorite_merchant_ids or []),
    }
