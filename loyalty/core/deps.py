from __future__ import annotations

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.errors import AccessDenied, AccountInactive, Blacklisted, InvalidToken
from loyalty.core.security import TokenError, decode_access_token, token_account_id
from loyalty.models.account import Account, Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_account(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Account:
    if not token:
        raise InvalidToken("Missing bearer token")

    try:
        payload = decode_access_token(token)
        account_id = token_account_id(payload)
    except TokenError as e:
        raise InvalidToken() from e

    res = await db.execute(select(Account).where(Account.id == account_id, Account.deleted_at.is_(None)))
    account = res.scalar_one_or_none()

    if not account:
        raise InvalidToken("Account not found")
    # blacklist wins over the plain inactive flag
    if account.is_blacklisted:
        raise Blacklisted(account.blacklist_reason)
    if not account.is_active:
        raise AccountInactive()

    return account


def require_role(*roles: Role):
    allowed = {r.value for r in roles}

    def _check(current_account: Account = Depends(get_current_account)) -> Account:
        if current_account.role not in allowed:
            raise AccessDenied(f"{' or '.join(sorted(allowed)).capitalize()} only")
        return current_account

    return _check


require_admin = require_role(Role.admin)
require_merchant = require_role(Role.merchant)
require_customer = require_role(Role.customer)
