from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.errors import AccountNotFound, CustomerProfileMissing, EmailAlreadyUsed
from loyalty.core.security import generate_qr_token, hash_password
from loyalty.models.account import Account, OAuthProvider, Role
from loyalty.models.category import Category
from loyalty.models.customer import CustomerProfile
from loyalty.models.merchant import Merchant
from loyalty.services.aggregates import bump

logger = logging.getLogger("uvicorn.error")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_account(db: AsyncSession, account_id: int, *, lock: bool = False) -> Account:
    stmt = select(Account).where(Account.id == int(account_id), Account.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    account = res.scalar_one_or_none()
    if not account:
        raise AccountNotFound()
    return account


async def find_account_by_email(db: AsyncSession, email: str, *, lock: bool = False) -> Account | None:
    stmt = select(Account).where(Account.email == normalize_email(email), Account.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def ensure_email_free(db: AsyncSession, email: str, *, exclude_account_id: int | None = None) -> None:
    stmt = select(Account.id).where(Account.email == normalize_email(email), Account.deleted_at.is_(None))
    if exclude_account_id is not None:
        stmt = stmt.where(Account.id != int(exclude_account_id))
    res = await db.execute(stmt)
    if res.first() is not None:
        raise EmailAlreadyUsed()


async def get_customer_profile(db: AsyncSession, account_id: int) -> CustomerProfile:
    # counters move through bump(), which bypasses the identity map
    res = await db.execute(
        select(CustomerProfile)
        .where(
            CustomerProfile.account_id == int(account_id),
            CustomerProfile.deleted_at.is_(None),
        )
        .execution_options(populate_existing=True)
    )
    profile = res.scalar_one_or_none()
    if not profile:
        raise CustomerProfileMissing()
    return profile


async def find_merchant_profile(db: AsyncSession, account_id: int, *, lock: bool = False) -> Merchant | None:
    stmt = (
        select(Merchant)
        .where(Merchant.account_id == int(account_id), Merchant.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def create_customer_account(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    oauth_provider: OAuthProvider = OAuthProvider.local,
    provider_id: str | None = None,
    email_verified: bool = False,
) -> tuple[Account, CustomerProfile]:
    """Add a customer account and its QR-bearing profile to the session (no commit)."""
    account = Account(
        email=normalize_email(email),
        password_hash=hash_password(password),
        role=Role.customer.value,
        is_active=True,
        is_email_verified=email_verified,
        failed_login_attempts=0,
        oauth_provider=oauth_provider.value,
    )
    if oauth_provider == OAuthProvider.google:
        account.google_id = provider_id
    elif oauth_provider == OAuthProvider.apple:
        account.apple_id = provider_id

    db.add(account)
    await db.flush()  # need account.id for the profile FK

    profile = CustomerProfile(
        account_id=account.id,
        qr_token=generate_qr_token(),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        scans_count=0,
        ratings_given_count=0,
        favorite_merchant_ids=[],
    )
    db.add(profile)
    await db.flush()
    return account, profile


async def create_account(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    role: Role,
    email_verified: bool = False,
) -> Account:
    """Admin-side creation of a merchant or admin account. Customers go through registration."""
    await ensure_email_free(db, email)
    try:
        if role == Role.customer:
            account, _ = await create_customer_account(
                db, email=email, password=password, email_verified=email_verified
            )
        else:
            account = Account(
                email=normalize_email(email),
                password_hash=hash_password(password),
                role=role.value,
                is_active=True,
                is_email_verified=email_verified,
                failed_login_attempts=0,
                oauth_provider=OAuthProvider.local.value,
            )
            db.add(account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(account)
    logger.info("account created id=%s role=%s", account.id, account.role)
    return account


# -------------------------
# Self-service profile
# -------------------------
async def update_email(db: AsyncSession, *, account: Account, email: str) -> Account:
    new_email = normalize_email(email)
    if new_email == account.email:
        return account

    await ensure_email_free(db, new_email, exclude_account_id=account.id)
    try:
        account.email = new_email
        account.is_email_verified = False  # must re-verify
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(account)
    return account


async def update_customer_details(
    db: AsyncSession,
    *,
    account: Account,
    first_name: str | None,
    last_name: str | None,
    phone: str | None,
) -> CustomerProfile:
    profile = await get_customer_profile(db, account.id)
    if first_name is not None:
        profile.first_name = first_name
    if last_name is not None:
        profile.last_name = last_name
    if phone is not None:
        profile.phone = phone
    await db.commit()
    await db.refresh(profile)
    return profile


async def _soft_delete(db: AsyncSession, account: Account) -> None:
    now = utc_now()
    account.deleted_at = now
    account.is_active = False
    account.refresh_token = None

    res = await db.execute(select(CustomerProfile).where(CustomerProfile.account_id == account.id))
    profile = res.scalar_one_or_none()
    if profile is not None and profile.deleted_at is None:
        profile.deleted_at = now

    merchant = await find_merchant_profile(db, account.id)
    if merchant is not None:
        merchant.deleted_at = now
        merchant.is_active = False
        await bump(db, Category, merchant.category_id, merchant_count=-1)


async def delete_own_account(db: AsyncSession, *, account: Account) -> None:
    try:
        await _soft_delete(db, account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("account soft-deleted by owner id=%s", account.id)


# -------------------------
# Admin
# -------------------------
async def list_accounts(
    db: AsyncSession,
    *,
    role: Role | None,
    blacklisted: bool | None,
    page: int,
    limit: int,
) -> tuple[list[Account], int]:
    stmt = select(Account).where(Account.deleted_at.is_(None))
    if role is not None:
        stmt = stmt.where(Account.role == role.value)
    if blacklisted is not None:
        stmt = stmt.where(Account.is_blacklisted.is_(blacklisted))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    stmt = stmt.order_by(Account.created_at.desc(), Account.id.desc())
    res = await db.execute(stmt.limit(int(limit)).offset((int(page) - 1) * int(limit)))
    return list(res.scalars().all()), int(total)


async def list_blacklisted(db: AsyncSession) -> list[Account]:
    res = await db.execute(
        select(Account)
        .where(Account.is_blacklisted.is_(True), Account.deleted_at.is_(None))
        .order_by(Account.blacklisted_at.desc())
    )
    return list(res.scalars().all())


async def admin_update_account(
    db: AsyncSession,
    *,
    account_id: int,
    email: str | None,
    is_active: bool | None,
    is_email_verified: bool | None,
    role: Role | None,
) -> Account:
    account = await get_account(db, account_id)
    if email:
        await ensure_email_free(db, email, exclude_account_id=account.id)
        account.email = normalize_email(email)
    if is_active is not None:
        account.is_active = is_active
    if is_email_verified is not None:
        account.is_email_verified = is_email_verified
    if role is not None:
        account.role = role.value

    await db.commit()
    await db.refresh(account)
    return account


async def admin_delete_account(db: AsyncSession, *, account_id: int) -> None:
    account = await get_account(db, account_id)
    try:
        await _soft_delete(db, account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("account soft-deleted by admin id=%s", account_id)


def apply_blacklist(account: Account, reason: str | None) -> None:
    account.is_blacklisted = True
    account.blacklist_reason = reason
    account.blacklisted_at = utc_now()
    account.is_active = False
    # a blocked account must not be able to mint new access tokens
    account.refresh_token = None


def clear_blacklist(account: Account) -> None:
    account.is_blacklisted = False
    account.blacklist_reason = None
    account.blacklisted_at = None
    account.is_active = True


async def blacklist_account(db: AsyncSession, *, account_id: int, reason: str | None) -> Account:
    account = await get_account(db, account_id, lock=True)
    try:
        apply_blacklist(account, reason)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(account)
    logger.info("account blacklisted id=%s reason=%r", account.id, reason)
    return account


async def unblacklist_account(db: AsyncSession, *, account_id: int) -> Account:
    account = await get_account(db, account_id, lock=True)
    try:
        clear_blacklist(account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(account)
    logger.info("account removed from blacklist id=%s", account.id)
    return account


async def verify_email(db: AsyncSession, *, account_id: int) -> Account:
    account = await get_account(db, account_id)
    account.is_email_verified = True
    await db.commit()
    await db.refresh(account)
    return account
