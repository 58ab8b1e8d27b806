from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import require_admin
from loyalty.models.account import Account, Role
from loyalty.schemas.accounts import (
    AccountListResponse,
    AccountOut,
    AdminAccountCreate,
    AdminAccountUpdate,
    BlacklistRequest,
)
from loyalty.schemas.auth import DetailOut
from loyalty.services import accounts as accounts_service

router = APIRouter(prefix="/admin/accounts", tags=["admin-accounts"])


@router.get("", response_model=AccountListResponse)
async def list_accounts(
    role: Optional[Role] = Query(default=None),
    blacklisted: Optional[bool] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    items, total = await accounts_service.list_accounts(
        db, role=role, blacklisted=blacklisted, page=page, limit=limit
    )
    return AccountListResponse(
        items=[AccountOut.model_validate(a) for a in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
async def create_account(
    payload: AdminAccountCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.create_account(
        db,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        email_verified=payload.is_email_verified,
    )


# declared before /{account_id} so "blacklisted" is not parsed as an id
@router.get("/blacklisted", response_model=list[AccountOut])
async def list_blacklisted(
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.list_blacklisted(db)


@router.get("/{account_id}", response_model=AccountOut)
async def get_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.get_account(db, account_id)


@router.put("/{account_id}", response_model=AccountOut)
async def update_account(
    account_id: int,
    payload: AdminAccountUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.admin_update_account(
        db,
        account_id=account_id,
        email=payload.email,
        is_active=payload.is_active,
        is_email_verified=payload.is_email_verified,
        role=payload.role,
    )


@router.delete("/{account_id}", response_model=DetailOut)
async def delete_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    await accounts_service.admin_delete_account(db, account_id=account_id)
    return DetailOut(detail="Account deleted")


@router.post("/{account_id}/blacklist", response_model=AccountOut)
async def blacklist_account(
    account_id: int,
    payload: BlacklistRequest,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.blacklist_account(db, account_id=account_id, reason=payload.reason)


@router.delete("/{account_id}/blacklist", response_model=AccountOut)
async def unblacklist_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.unblacklist_account(db, account_id=account_id)


@router.post("/{account_id}/verify-email", response_model=AccountOut)
async def verify_email(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await accounts_service.verify_email(db, account_id=account_id)
