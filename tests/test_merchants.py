import asyncio

import pytest

from loyalty.core.errors import (
    ImageIndexOutOfRange,
    ImageLimitReached,
    MerchantNotFound,
    MerchantProfileExists,
    MerchantUnavailable,
)
from loyalty.services import accounts as accounts_service
from loyalty.services import merchants

# Paris, Versailles (~17 km), Lyon (~390 km)
PARIS = (48.8566, 2.3522)
VERSAILLES = (48.8049, 2.1204)
LYON = (45.7640, 4.8357)


class TestOwnerProfile:
    async def test_create_counts_in_category(self, db, factory):
        category = await factory.category()
        _, merchant = await factory.merchant(category=category)

        await db.refresh(category)
        assert category.merchant_count == 1
        assert merchant.images == []
        assert merchant.opening_hours == {}

    async def test_one_profile_per_account(self, db, factory):
        account, _ = await factory.merchant()
        with pytest.raises(MerchantProfileExists):
            await factory.merchant(account=account)

    async def test_opening_hours(self, db, factory):
        account, _ = await factory.merchant()
        hours = {"monday": {"open": "08:00", "close": "18:00", "closed": False}}

        merchant = await merchants.set_opening_hours(db, account=account, opening_hours=hours)
        assert merchant.opening_hours == hours

    async def test_image_cap(self, db, factory):
        account, _ = await factory.merchant()
        for i in range(5):
            merchant = await merchants.add_image(db, account=account, url=f"https://img.example.com/{i}.jpg")
        assert len(merchant.images) == 5

        with pytest.raises(ImageLimitReached):
            await merchants.add_image(db, account=account, url="https://img.example.com/6.jpg")

    async def test_remove_image(self, db, factory):
        account, _ = await factory.merchant()
        for name in ("a", "b", "c"):
            await merchants.add_image(db, account=account, url=name)

        merchant = await merchants.remove_image(db, account=account, index=1)
        assert merchant.images == ["a", "c"]

        for index in (3, -1):
            with pytest.raises(ImageIndexOutOfRange):
                await merchants.remove_image(db, account=account, index=index)

    async def test_stats(self, db, factory):
        account, _ = await factory.merchant()
        stats = await merchants.my_stats(db, account=account)
        assert stats["total_visits"] == 0
        assert stats["rating_count"] == 0


class TestCatalog:
    async def test_nearby_sorted_and_bounded(self, db, factory):
        _, paris = await factory.merchant(business_name="Paris", latitude=PARIS[0], longitude=PARIS[1])
        _, versailles = await factory.merchant(
            business_name="Versailles", latitude=VERSAILLES[0], longitude=VERSAILLES[1]
        )
        await factory.merchant(business_name="Lyon", latitude=LYON[0], longitude=LYON[1])

        hits = await merchants.search_nearby(db, latitude=PARIS[0], longitude=PARIS[1], radius_km=25)

        assert [h.item.id for h in hits] == [paris.id, versailles.id]
        assert hits[0].distance_km == 0
        assert 15 < hits[1].distance_km < 20

    async def test_default_radius(self, db, factory):
        await factory.merchant(latitude=VERSAILLES[0], longitude=VERSAILLES[1])
        assert await merchants.search_nearby(db, latitude=PARIS[0], longitude=PARIS[1]) == []

    async def test_list_filters_and_excludes_blacklisted(self, db, factory):
        _, cafe = await factory.merchant(business_name="Cafe Flore", city="Paris")
        _, bakery = await factory.merchant(business_name="Boulangerie", business_type="bakery", city="Lyon")
        _, banned = await factory.merchant(business_name="Cafe Shady", city="Paris")
        await merchants.blacklist_merchant(db, merchant_id=banned.id, reason="fraud")

        items, total = await merchants.list_merchants(db, city="Paris")
        assert total == 1
        assert [m.id for m in items] == [cafe.id]

        items, _ = await merchants.list_merchants(db, search="boulan")
        assert [m.id for m in items] == [bakery.id]

        items, _ = await merchants.list_merchants(db, business_type="bakery")
        assert [m.id for m in items] == [bakery.id]

        assert [m.id for m in await merchants.list_by_city(db, city="Lyon")] == [bakery.id]

    async def test_public_read_counts_visits(self, db, factory):
        _, merchant = await factory.merchant()

        await merchants.get_public(db, merchant_id=merchant.id)
        seen = await merchants.get_public(db, merchant_id=merchant.id)

        assert seen.total_visits == 2

    async def test_blacklisted_merchant_is_unavailable(self, db, factory):
        _, merchant = await factory.merchant()
        await merchants.blacklist_merchant(db, merchant_id=merchant.id, reason="spam")

        with pytest.raises(MerchantUnavailable):
            await merchants.get_public(db, merchant_id=merchant.id)
        with pytest.raises(MerchantUnavailable):
            await merchants.active_promotions(db, merchant_id=merchant.id)

    async def test_active_promotions_only(self, db, factory):
        account, merchant = await factory.merchant()
        live = await factory.promotion(account)
        await factory.expired_promotion(merchant)
        await factory.promotion(account, is_active=False)

        assert [p.id for p in await merchants.active_promotions(db, merchant_id=merchant.id)] == [live.id]


class TestAdmin:
    async def test_blacklist_cascades_to_owner(self, db, factory):
        account, merchant = await factory.merchant()

        await merchants.blacklist_merchant(db, merchant_id=merchant.id, reason="fraud")
        owner = await accounts_service.get_account(db, account.id)
        assert owner.is_blacklisted is True
        assert owner.blacklist_reason == "fraud"

        restored = await merchants.unblacklist_merchant(db, merchant_id=merchant.id)
        owner = await accounts_service.get_account(db, account.id)
        assert restored.is_listed is True
        assert owner.is_blacklisted is False

    async def test_admin_delete_releases_category(self, db, factory):
        category = await factory.category()
        _, merchant = await factory.merchant(category=category)

        await merchants.admin_delete(db, merchant_id=merchant.id)

        await db.refresh(category)
        assert category.merchant_count == 0
        with pytest.raises(MerchantNotFound):
            await merchants.get_merchant(db, merchant.id)

    async def test_verify(self, db, factory):
        _, merchant = await factory.merchant()
        assert (await merchants.verify(db, merchant_id=merchant.id)).is_verified is True


class TestFavorites:
    async def test_add_is_idempotent_and_ordered(self, db, factory):
        customer, _ = await factory.customer()
        _, first = await factory.merchant(business_name="First")
        _, second = await factory.merchant(business_name="Second")

        await merchants.add_favorite(db, account=customer, merchant_id=second.id)
        await merchants.add_favorite(db, account=customer, merchant_id=first.id)
        ids = await merchants.add_favorite(db, account=customer, merchant_id=second.id)

        assert ids == [second.id, first.id]
        assert [m.id for m in await merchants.list_favorites(db, account=customer)] == [second.id, first.id]

    async def test_remove(self, db, factory):
        customer, _ = await factory.customer()
        _, merchant = await factory.merchant()
        await merchants.add_favorite(db, account=customer, merchant_id=merchant.id)

        assert await merchants.remove_favorite(db, account=customer, merchant_id=merchant.id) == []
        # removing again is a no-op
        assert await merchants.remove_favorite(db, account=customer, merchant_id=merchant.id) == []

    async def test_blacklisted_merchant_cannot_be_favorited(self, db, factory):
        customer, _ = await factory.customer()
        _, merchant = await factory.merchant()
        await merchants.blacklist_merchant(db, merchant_id=merchant.id, reason=None)

        with pytest.raises(MerchantUnavailable):
            await merchants.add_favorite(db, account=customer, merchant_id=merchant.id)


async def test_concurrent_image_adds_respect_the_cap(pg_session_factory, factory_on):
    async with pg_session_factory() as s:
        account, merchant = await factory_on(s).merchant()
        for i in range(4):
            await merchants.add_image(s, account=account, url=f"https://img.example.com/{i}.jpg")

    async def attempt(url):
        async with pg_session_factory() as session:
            try:
                await merchants.add_image(session, account=account, url=url)
                return "ok"
            except ImageLimitReached:
                return "full"

    results = await asyncio.gather(attempt("https://img.example.com/a.jpg"), attempt("https://img.example.com/b.jpg"))
    assert sorted(results) == ["full", "ok"]

    async with pg_session_factory() as s:
        fresh = await merchants.get_merchant(s, merchant.id)
        assert len(fresh.images) == 5
