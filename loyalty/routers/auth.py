from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.config import settings
from loyalty.core.db import get_db
from loyalty.core.deps import get_current_account
from loyalty.models.account import Account, OAuthProvider
from loyalty.schemas.auth import (
    AccountSummary,
    AuthResponse,
    ChangePasswordRequest,
    DetailOut,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    ProviderLoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPair,
)
from loyalty.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(account: Account, pair: auth_service.TokenPair) -> AuthResponse:
    return AuthResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        account=AccountSummary.model_validate(account),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    account, pair = await auth_service.register_customer(
        db,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
    )
    return _auth_response(account, pair)


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    account, pair = await auth_service.authenticate(db, email=payload.email, password=payload.password)
    return _auth_response(account, pair)


@router.post("/refresh", response_model=TokenPair)
async def refresh(payload: RefreshRequest, db: AsyncSession = Depends(get_db)):
    pair = await auth_service.refresh(db, refresh_token=payload.refresh_token)
    return TokenPair(access_token=pair.access_token, refresh_token=pair.refresh_token, token_type=pair.token_type)


async def _provider_login(provider: OAuthProvider, payload: ProviderLoginRequest, db: AsyncSession) -> AuthResponse:
    account, pair = await auth_service.login_with_provider(
        db,
        provider=provider,
        provider_id=payload.provider_id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return _auth_response(account, pair)


@router.post("/google", response_model=AuthResponse)
async def login_google(payload: ProviderLoginRequest, db: AsyncSession = Depends(get_db)):
    return await _provider_login(OAuthProvider.google, payload, db)


@router.post("/apple", response_model=AuthResponse)
async def login_apple(payload: ProviderLoginRequest, db: AsyncSession = Depends(get_db)):
    return await _provider_login(OAuthProvider.apple, payload, db)


@router.post("/logout", response_model=DetailOut)
async def logout(
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    await auth_service.logout(db, account=current_account)
    return DetailOut(detail="Logged out")


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(payload: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    token = await auth_service.forgot_password(db, email=payload.email)
    # same answer whether or not the email exists
    return ForgotPasswordResponse(
        detail="If this email is registered, a reset link has been sent",
        reset_token=token if settings.EXPOSE_RESET_TOKEN else None,
    )


@router.post("/reset-password", response_model=DetailOut)
async def reset_password(payload: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    await auth_service.reset_password(db, token=payload.token, new_password=payload.new_password)
    return DetailOut(detail="Password has been reset")


@router.post("/change-password", response_model=DetailOut)
async def change_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_account: Account = Depends(get_current_account),
):
    await auth_service.change_password(
        db,
        account=current_account,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return DetailOut(detail="Password updated")
