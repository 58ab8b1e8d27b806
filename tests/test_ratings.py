from decimal import Decimal

import pytest
from sqlalchemy import select

from loyalty.core.errors import (
    AlreadyRated,
    DuplicateRatingForMerchant,
    InvalidScore,
    RatingNotFound,
    RedemptionNotFound,
)
from loyalty.models.rating import Rating
from loyalty.models.redemption import Redemption
from loyalty.services import ratings, redemptions


async def redeem(db, merchant_account, promotion, profile):
    return await redemptions.redeem(
        db, qr_token=profile.qr_token, promotion_id=promotion.id, merchant_account=merchant_account
    )


@pytest.fixture
async def visit(db, factory):
    merchant_account, merchant = await factory.merchant()
    promotion = await factory.promotion(merchant_account)
    customer, profile = await factory.customer()
    redemption = await redeem(db, merchant_account, promotion, profile)
    return merchant_account, merchant, customer, profile, redemption


@pytest.mark.parametrize("score", [0, 6, -1, True, 4.5, "5", None])
def test_validate_score_rejects(score):
    with pytest.raises(InvalidScore):
        ratings.validate_score(score)


@pytest.mark.parametrize("score", [1, 3, 5])
def test_validate_score_accepts(score):
    assert ratings.validate_score(score) == score


class TestRate:
    async def test_rating_updates_merchant_and_profile(self, db, visit):
        _, merchant, customer, profile, redemption = visit

        rating = await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=4)

        assert rating.score == 4
        assert rating.merchant_id == merchant.id
        await db.refresh(merchant)
        await db.refresh(profile)
        await db.refresh(redemption)
        assert merchant.rating_count == 1
        assert Decimal(str(merchant.rating_average)) == Decimal("4.00")
        assert profile.ratings_given_count == 1
        assert redemption.rated is True

    async def test_average_across_customers(self, db, factory, visit):
        merchant_account, merchant, customer, _, redemption = visit
        promotion = await factory.promotion(merchant_account, title="Second")
        other, other_profile = await factory.customer()
        other_redemption = await redeem(db, merchant_account, promotion, other_profile)

        await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=5)
        await ratings.rate(db, customer_account=other, redemption_id=other_redemption.id, score=4)

        await db.refresh(merchant)
        assert merchant.rating_count == 2
        assert Decimal(str(merchant.rating_average)) == Decimal("4.50")

    async def test_rounding_is_half_up(self, db, factory, visit):
        merchant_account, merchant, customer, _, redemption = visit
        await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=5)

        for score in (5, 4):
            promotion = await factory.promotion(merchant_account)
            c, p = await factory.customer()
            r = await redeem(db, merchant_account, promotion, p)
            await ratings.rate(db, customer_account=c, redemption_id=r.id, score=score)

        # (5 + 5 + 4) / 3 = 4.666...
        await db.refresh(merchant)
        assert Decimal(str(merchant.rating_average)) == Decimal("4.67")

    async def test_same_redemption_twice(self, db, visit):
        _, _, customer, _, redemption = visit
        await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=3)

        with pytest.raises(AlreadyRated):
            await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=5)

    async def test_second_redemption_at_same_merchant(self, db, factory, visit):
        merchant_account, merchant, customer, profile, redemption = visit
        promotion = await factory.promotion(merchant_account, title="Another")
        second = await redeem(db, merchant_account, promotion, profile)

        await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=2)
        with pytest.raises(DuplicateRatingForMerchant):
            await ratings.rate(db, customer_account=customer, redemption_id=second.id, score=5)

        await db.refresh(merchant)
        await db.refresh(second)
        assert merchant.rating_count == 1
        assert second.rated is False

    async def test_someone_elses_redemption(self, db, factory, visit):
        _, _, _, _, redemption = visit
        stranger, _ = await factory.customer()

        with pytest.raises(RedemptionNotFound):
            await ratings.rate(db, customer_account=stranger, redemption_id=redemption.id, score=5)

    async def test_invalid_score_leaves_redemption_unrated(self, db, visit):
        _, _, customer, _, redemption = visit
        with pytest.raises(InvalidScore):
            await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=6)

        await db.refresh(redemption)
        assert redemption.rated is False


class TestDeleteRating:
    async def test_delete_restores_previous_average(self, db, factory, visit):
        merchant_account, merchant, customer, _, redemption = visit
        promotion = await factory.promotion(merchant_account)
        other, other_profile = await factory.customer()
        other_redemption = await redeem(db, merchant_account, promotion, other_profile)

        first = await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=4)
        second = await ratings.rate(db, customer_account=other, redemption_id=other_redemption.id, score=5)

        await ratings.delete_rating(db, rating_id=second.id)
        await db.refresh(merchant)
        assert merchant.rating_count == 1
        assert Decimal(str(merchant.rating_average)) == Decimal("4.00")

        await ratings.delete_rating(db, rating_id=first.id)
        await db.refresh(merchant)
        assert merchant.rating_count == 0
        assert Decimal(str(merchant.rating_average)) == Decimal("0.00")

    async def test_redemption_stays_rated(self, db, visit):
        _, _, customer, _, redemption = visit
        rating = await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=1)

        await ratings.delete_rating(db, rating_id=rating.id)

        assert (await db.execute(select(Rating.id))).first() is None
        flag = (await db.execute(select(Redemption.rated).where(Redemption.id == redemption.id))).scalar_one()
        assert flag is True
        with pytest.raises(AlreadyRated):
            await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=5)

    async def test_unknown_rating(self, db):
        with pytest.raises(RatingNotFound):
            await ratings.delete_rating(db, rating_id=999)


class TestReads:
    async def test_listings(self, db, visit):
        _, merchant, customer, _, redemption = visit
        await ratings.rate(db, customer_account=customer, redemption_id=redemption.id, score=5)

        rows, total = await ratings.list_for_merchant(db, merchant_id=merchant.id)
        assert total == 1
        rating, profile = rows[0]
        assert rating.score == 5
        assert profile.display_name == "Ada L"

        mine = await ratings.list_mine(db, customer_account=customer)
        assert [(r.score, m.business_name) for r, m in mine] == [(5, "Le Petit Cafe")]
