"""
Authentication state machine.

Gate order on every credential login is fixed: blacklist, then lockout,
then the password itself. Lockout counts failures per account; the
``MAX_LOGIN_ATTEMPTS``-th failure locks the account for ``LOCK_HOURS``.
Once an expired lock is hit by a new failure, the counter restarts at 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import as_utc, utc_now
from loyalty.core.config import settings
from loyalty.core.errors import (
    AccountInactive,
    AccountLocked,
    Blacklisted,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidResetToken,
    OAuthPasswordChange,
    PasswordMismatch,
)
from loyalty.core.security import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    generate_reset_token,
    hash_password,
    random_password,
    token_account_id,
    verify_password,
)
from loyalty.models.account import Account, OAuthProvider
from loyalty.services.accounts import create_customer_account, ensure_email_free, find_account_by_email, normalize_email

logger = logging.getLogger("uvicorn.error")


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


def _mint_pair(account: Account) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(account_id=account.id, role=account.role, email=account.email),
        refresh_token=create_refresh_token(account_id=account.id),
    )


def issue_token_pair(account: Account) -> TokenPair:
    """
    Mint a new pair and make its refresh token the only valid one for the account.

    The caller commits; the previous refresh token stops working at that point.
    """
    pair = _mint_pair(account)
    account.refresh_token = pair.refresh_token
    return pair


def _record_failed_login(account: Account) -> None:
    now = utc_now()
    lock_until = as_utc(account.lock_until)

    if lock_until is not None and lock_until < now:
        # lock served; start a fresh count
        account.failed_login_attempts = 1
        account.lock_until = None
        return

    account.failed_login_attempts = int(account.failed_login_attempts or 0) + 1
    if account.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS and lock_until is None:
        account.lock_until = now + timedelta(hours=settings.LOCK_HOURS)
        logger.info("account locked id=%s until=%s", account.id, account.lock_until.isoformat())


async def authenticate(db: AsyncSession, *, email: str, password: str) -> tuple[Account, TokenPair]:
    account = await find_account_by_email(db, email, lock=True)

    # unknown email and wrong password look the same to the caller
    if not account:
        await db.rollback()
        raise InvalidCredentials()

    if account.is_blacklisted:
        reason = account.blacklist_reason
        await db.rollback()
        raise Blacklisted(reason)

    if account.is_locked(utc_now()):
        await db.rollback()
        raise AccountLocked()

    if not verify_password(password, account.password_hash):
        try:
            _record_failed_login(account)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        raise InvalidCredentials()

    if not account.is_active:
        await db.rollback()
        raise AccountInactive()

    try:
        account.failed_login_attempts = 0
        account.lock_until = None
        account.last_login_at = utc_now()
        pair = issue_token_pair(account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(account)
    return account, pair


async def refresh(db: AsyncSession, *, refresh_token: str) -> TokenPair:
    """
    Exchange the current refresh token for a new pair.

    The stored token is swapped with a compare-and-set UPDATE, so of two
    concurrent refreshes with the same token exactly one wins.
    """
    try:
        payload = decode_refresh_token(refresh_token)
        account_id = token_account_id(payload)
    except TokenError as e:
        raise InvalidRefreshToken() from e

    res = await db.execute(select(Account).where(Account.id == account_id, Account.deleted_at.is_(None)))
    account = res.scalar_one_or_none()
    if not account or account.is_blacklisted or not account.is_active:
        await db.rollback()
        raise InvalidRefreshToken()

    pair = _mint_pair(account)
    try:
        swapped = await db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.refresh_token == refresh_token,
                Account.deleted_at.is_(None),
            )
            .values(refresh_token=pair.refresh_token)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            await db.rollback()
            logger.warning("stale refresh token presented account_id=%s", account_id)
            raise InvalidRefreshToken()
        await db.commit()
    except InvalidRefreshToken:
        raise
    except Exception:
        await db.rollback()
        raise

    return pair


async def logout(db: AsyncSession, *, account: Account) -> None:
    account.refresh_token = None
    await db.commit()


async def register_customer(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str | None,
    last_name: str | None,
    phone: str | None,
) -> tuple[Account, TokenPair]:
    await ensure_email_free(db, email)
    try:
        account, _profile = await create_customer_account(
            db,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        pair = issue_token_pair(account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(account)
    logger.info("customer registered id=%s", account.id)
    return account, pair


async def login_with_provider(
    db: AsyncSession,
    *,
    provider: OAuthProvider,
    provider_id: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> tuple[Account, TokenPair]:
    """
    Sign in through an external identity provider.

    Matches an existing account by provider id or email. A match by email
    only gets the provider id linked to it. The provider's email claim is
    trusted as-is.
    """
    id_col = Account.google_id if provider == OAuthProvider.google else Account.apple_id
    res = await db.execute(
        select(Account)
        .where(
            or_(id_col == provider_id, Account.email == normalize_email(email)),
            Account.deleted_at.is_(None),
        )
        .order_by((id_col == provider_id).desc())
        .limit(1)
    )
    account = res.scalar_one_or_none()

    if account is not None and account.is_blacklisted:
        reason = account.blacklist_reason
        await db.rollback()
        raise Blacklisted(reason)

    try:
        if account is None:
            account, _profile = await create_customer_account(
                db,
                email=email,
                password=random_password(),
                first_name=first_name,
                last_name=last_name,
                oauth_provider=provider,
                provider_id=provider_id,
                email_verified=True,
            )
            logger.info("customer created through %s id=%s", provider.value, account.id)
        elif getattr(account, id_col.key) is None:
            setattr(account, id_col.key, provider_id)
            account.oauth_provider = provider.value
            account.is_email_verified = True
            logger.info("%s linked to account id=%s", provider.value, account.id)

        account.last_login_at = utc_now()
        pair = issue_token_pair(account)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(account)
    return account, pair


# -------------------------
# Password management
# -------------------------
async def change_password(db: AsyncSession, *, account: Account, current_password: str, new_password: str) -> None:
    if account.oauth_provider != OAuthProvider.local.value:
        raise OAuthPasswordChange()
    if not verify_password(current_password, account.password_hash):
        raise PasswordMismatch()

    account.password_hash = hash_password(new_password)
    await db.commit()


async def forgot_password(db: AsyncSession, *, email: str) -> str | None:
    """Issue a reset token. Returns None for unknown emails; callers must not reveal which."""
    account = await find_account_by_email(db, email)
    if not account:
        return None

    token = generate_reset_token()
    account.password_reset_token = token
    account.password_reset_expires_at = utc_now() + timedelta(minutes=settings.PASSWORD_RESET_MINUTES)
    await db.commit()
    return token


async def reset_password(db: AsyncSession, *, token: str, new_password: str) -> None:
    res = await db.execute(
        select(Account).where(Account.password_reset_token == token, Account.deleted_at.is_(None))
    )
    account = res.scalar_one_or_none()
    expires_at = as_utc(account.password_reset_expires_at) if account else None
    if not account or expires_at is None or expires_at <= utc_now():
        raise InvalidResetToken()

    account.password_hash = hash_password(new_password)
    account.password_reset_token = None
    account.password_reset_expires_at = None
    account.failed_login_attempts = 0
    account.lock_until = None
    await db.commit()
