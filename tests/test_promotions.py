from datetime import timedelta

import pytest

from loyalty.core.clock import as_utc
from loyalty.core.errors import InvalidPromotionWindow, MerchantProfileMissing, PromotionNotFound
from loyalty.models.account import Role
from loyalty.services import merchants as merchants_service
from loyalty.services import promotions


class TestValidity:
    async def test_bounds_are_inclusive(self, factory):
        account, _ = await factory.merchant()
        promotion = await factory.promotion(account)
        starts_at, ends_at = as_utc(promotion.starts_at), as_utc(promotion.ends_at)

        assert promotions.is_valid(promotion, starts_at)
        assert promotions.is_valid(promotion, ends_at)
        assert not promotions.is_valid(promotion, ends_at + timedelta(seconds=1))
        assert not promotions.is_valid(promotion, starts_at - timedelta(seconds=1))

    async def test_days_remaining_rounds_up(self, factory):
        account, _ = await factory.merchant()
        promotion = await factory.promotion(account, starts_in=timedelta(0), lasts=timedelta(days=2, hours=1))

        assert promotions.days_remaining(promotion, as_utc(promotion.starts_at)) == 3


class TestOwnerCrud:
    async def test_window_must_be_forward(self, factory):
        account, _ = await factory.merchant()
        with pytest.raises(InvalidPromotionWindow):
            await factory.promotion(account, lasts=timedelta(0))

    async def test_requires_merchant_profile(self, factory):
        bare = await factory.account(Role.merchant)
        with pytest.raises(MerchantProfileMissing):
            await factory.promotion(bare)

    async def test_update_rechecks_window(self, db, factory):
        account, _ = await factory.merchant()
        promotion = await factory.promotion(account)

        with pytest.raises(InvalidPromotionWindow):
            await promotions.update_promotion(
                db,
                account=account,
                promotion_id=promotion.id,
                data={"ends_at": promotion.starts_at - timedelta(hours=1)},
            )

        updated = await promotions.update_promotion(
            db, account=account, promotion_id=promotion.id, data={"title": "Two for one"}
        )
        assert updated.title == "Two for one"

    async def test_other_merchants_promotion_is_invisible(self, db, factory):
        owner, _ = await factory.merchant()
        rival, _ = await factory.merchant(business_name="Rival")
        promotion = await factory.promotion(owner)

        with pytest.raises(PromotionNotFound):
            await promotions.update_promotion(db, account=rival, promotion_id=promotion.id, data={"title": "Mine"})
        with pytest.raises(PromotionNotFound):
            await promotions.delete_promotion(db, account=rival, promotion_id=promotion.id)

    async def test_delete_is_soft(self, db, factory):
        account, _ = await factory.merchant()
        promotion = await factory.promotion(account)

        await promotions.delete_promotion(db, account=account, promotion_id=promotion.id)

        assert await promotions.list_mine(db, account=account) == []
        with pytest.raises(PromotionNotFound):
            await promotions.get_promotion(db, promotion.id)

    async def test_admin_delete(self, db, factory):
        account, _ = await factory.merchant()
        promotion = await factory.promotion(account)

        await promotions.admin_delete_promotion(db, promotion_id=promotion.id)
        with pytest.raises(PromotionNotFound):
            await promotions.get_promotion(db, promotion.id)


class TestListActive:
    async def test_filters(self, db, factory):
        paris_account, _ = await factory.merchant(city="Paris")
        lyon_account, _ = await factory.merchant(business_name="Bouchon", city="Lyon")
        banned_account, banned = await factory.merchant(business_name="Shady", city="Paris")

        live = await factory.promotion(paris_account)
        lyon_live = await factory.promotion(lyon_account)
        await factory.promotion(paris_account, starts_in=timedelta(days=1))
        await factory.promotion(banned_account)
        await merchants_service.blacklist_merchant(db, merchant_id=banned.id, reason=None)

        assert {p.id for p in await promotions.list_active(db)} == {live.id, lyon_live.id}
        assert [p.id for p in await promotions.list_active(db, city="Paris")] == [live.id]

    async def test_ignores_expired(self, db, factory):
        _, merchant = await factory.merchant()
        await factory.expired_promotion(merchant)
        assert await promotions.list_active(db) == []

    async def test_future_window_is_not_active_yet(self, db, factory):
        account, _ = await factory.merchant()
        await factory.promotion(account, starts_in=timedelta(hours=1))
        assert await promotions.list_active(db) == []
