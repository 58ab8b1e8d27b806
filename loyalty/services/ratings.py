"""
Rating ledger.

A rating must point at a redemption the customer owns and has not rated,
and a customer rates a given merchant at most once. The merchant's running
average is recomputed from its locked row:

    add:    avg' = round2((avg * n + s) / (n + 1))
    remove: avg' = round2((avg * n - s) / (n - 1)), or 0 when n - 1 == 0
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.db import is_unique_violation
from loyalty.core.errors import (
    AlreadyRated,
    DuplicateRatingForMerchant,
    InvalidScore,
    RatingNotFound,
    RedemptionNotFound,
)
from loyalty.models.account import Account
from loyalty.models.customer import CustomerProfile
from loyalty.models.merchant import Merchant
from loyalty.models.rating import Rating
from loyalty.models.redemption import Redemption
from loyalty.services.aggregates import average_after_add, average_after_remove, bump

logger = logging.getLogger("uvicorn.error")

MIN_SCORE = 1
MAX_SCORE = 5


def validate_score(score) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScore()
    if score < MIN_SCORE or score > MAX_SCORE:
        raise InvalidScore()
    return score


async def _lock_merchant(db: AsyncSession, merchant_id: int) -> Merchant:
    res = await db.execute(
        select(Merchant)
        .where(Merchant.id == int(merchant_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def rate(db: AsyncSession, *, customer_account: Account, redemption_id: int, score) -> Rating:
    score = validate_score(score)

    try:
        res = await db.execute(
            select(Redemption)
            .where(
                Redemption.id == int(redemption_id),
                Redemption.customer_account_id == customer_account.id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        redemption = res.scalar_one_or_none()
        if not redemption:
            raise RedemptionNotFound()
        if redemption.rated:
            raise AlreadyRated()

        existing = await db.execute(
            select(Rating.id).where(
                Rating.merchant_id == redemption.merchant_id,
                Rating.customer_account_id == customer_account.id,
            )
        )
        if existing.first() is not None:
            raise DuplicateRatingForMerchant()

        rating = Rating(
            merchant_id=redemption.merchant_id,
            customer_account_id=customer_account.id,
            redemption_id=redemption.id,
            score=score,
            created_at=utc_now(),
        )
        db.add(rating)
        redemption.rated = True
        await db.flush()

        merchant = await _lock_merchant(db, redemption.merchant_id)
        merchant.rating_average, merchant.rating_count = average_after_add(
            merchant.rating_average, merchant.rating_count, score
        )

        profile_id = (
            await db.execute(select(CustomerProfile.id).where(CustomerProfile.account_id == customer_account.id))
        ).scalar_one_or_none()
        if profile_id is not None:
            await bump(db, CustomerProfile, profile_id, ratings_given_count=1)

        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if is_unique_violation(e, "uq_ratings_redemption", "ratings.redemption_id"):
            raise AlreadyRated() from e
        if is_unique_violation(e, "uq_ratings_merchant_customer", "ratings.merchant_id", "ratings.customer_account_id"):
            raise DuplicateRatingForMerchant() from e
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(rating)
    logger.info(
        "rating recorded id=%s merchant_id=%s customer_id=%s score=%s",
        rating.id,
        rating.merchant_id,
        rating.customer_account_id,
        rating.score,
    )
    return rating


async def delete_rating(db: AsyncSession, *, rating_id: int) -> None:
    """
    Physically delete a rating and take its score back out of the merchant average.

    The redemption keeps ``rated = True``; it cannot be rated a second time.
    """
    try:
        res = await db.execute(select(Rating).where(Rating.id == int(rating_id)))
        rating = res.scalar_one_or_none()
        if not rating:
            raise RatingNotFound()

        merchant = await _lock_merchant(db, rating.merchant_id)
        merchant.rating_average, merchant.rating_count = average_after_remove(
            merchant.rating_average, merchant.rating_count, rating.score
        )

        await db.delete(rating)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("rating deleted id=%s merchant_id=%s", rating_id, merchant.id)


# -------------------------
# Reads
# -------------------------
async def list_for_merchant(
    db: AsyncSession,
    *,
    merchant_id: int,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[tuple[Rating, CustomerProfile | None]], int]:
    total = (
        await db.execute(select(func.count(Rating.id)).where(Rating.merchant_id == int(merchant_id)))
    ).scalar_one()

    res = await db.execute(
        select(Rating, CustomerProfile)
        .outerjoin(CustomerProfile, CustomerProfile.account_id == Rating.customer_account_id)
        .where(Rating.merchant_id == int(merchant_id))
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .limit(int(limit))
        .offset((int(page) - 1) * int(limit))
    )
    return [(r, c) for r, c in res.all()], int(total)


async def list_mine(db: AsyncSession, *, customer_account: Account) -> list[tuple[Rating, Merchant]]:
    res = await db.execute(
        select(Rating, Merchant)
        .join(Merchant, Merchant.id == Rating.merchant_id)
        .where(Rating.customer_account_id == customer_account.id)
        .order_by(Rating.created_at.desc(), Rating.id.desc())
    )
    return [(r, m) for r, m in res.all()]
