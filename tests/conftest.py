"""Shared fixtures: in-memory SQLite per test, app client with get_db overridden, data factories."""

import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import loyalty.models  # noqa: E402,F401
from loyalty.core.clock import utc_now  # noqa: E402
from loyalty.core.db import Base, get_db, make_session_factory  # noqa: E402
from loyalty.main import app  # noqa: E402
from loyalty.models.account import Role  # noqa: E402
from loyalty.models.promotion import Promotion  # noqa: E402
from loyalty.services import categories as categories_service  # noqa: E402
from loyalty.services import merchants as merchants_service  # noqa: E402
from loyalty.services import promotions as promotions_service  # noqa: E402
from loyalty.services.accounts import create_account, create_customer_account  # noqa: E402

PASSWORD = "Secret123!"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _email(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq}@example.com"

    async def customer(self, email: str | None = None, password: str = PASSWORD):
        account, profile = await create_customer_account(
            self.db, email=email or self._email("customer"), password=password, first_name="Ada", last_name="L"
        )
        await self.db.commit()
        return account, profile

    async def account(self, role: Role, email: str | None = None, password: str = PASSWORD):
        return await create_account(self.db, email=email or self._email(role.value), password=password, role=role)

    async def category(self, name: str = "Food", parent_id: int | None = None):
        self._seq += 1
        return await categories_service.create_category(
            self.db, data={"name": f"{name} {self._seq}", "parent_id": parent_id}
        )

    async def merchant(self, account=None, category=None, **overrides):
        account = account or await self.account(Role.merchant)
        category = category or await self.category()
        data = {
            "business_name": "Le Petit Cafe",
            "business_type": "cafe",
            "category_id": category.id,
            "address": "1 rue de Rivoli",
            "postal_code": "75001",
            "city": "Paris",
            "latitude": 48.8566,
            "longitude": 2.3522,
        }
        data.update(overrides)
        merchant = await merchants_service.create_profile(self.db, account=account, data=data)
        return account, merchant

    async def promotion(self, merchant_account, *, starts_in=timedelta(days=-1), lasts=timedelta(days=30), **overrides):
        starts_at = utc_now() + starts_in
        data = {"title": "Free coffee", "starts_at": starts_at, "ends_at": starts_at + lasts}
        data.update(overrides)
        return await promotions_service.create_promotion(self.db, account=merchant_account, data=data)

    async def expired_promotion(self, merchant):
        now = utc_now()
        promotion = Promotion(
            merchant_id=merchant.id,
            title="Last week",
            starts_at=now - timedelta(days=10),
            ends_at=now - timedelta(days=3),
            is_active=True,
        )
        self.db.add(promotion)
        await self.db.commit()
        return promotion


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def factory_on():
    """Factory over a session of the caller's choosing."""
    return Factory


@pytest.fixture
def auth_headers(client: AsyncClient):
    """Log in through the API and return the Authorization header for that account."""

    async def _login(email: str, password: str = PASSWORD) -> dict:
        resp = await client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login


@pytest.fixture
async def pg_session_factory():
    """Session factory on a real PostgreSQL; row locks are no-ops on SQLite."""
    url = os.getenv("LOYALTY_PG_TEST_URL")
    if not url:
        pytest.skip("set LOYALTY_PG_TEST_URL to run against PostgreSQL")

    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
