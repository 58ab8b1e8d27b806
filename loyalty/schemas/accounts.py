from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from loyalty.models.account import Role


class CustomerProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    qr_token: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    scans_count: int
    ratings_given_count: int
    favorite_merchant_ids: list[int] = Field(default_factory=list)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: str
    is_active: bool
    is_email_verified: bool
    is_blacklisted: bool
    blacklist_reason: Optional[str] = None
    blacklisted_at: Optional[datetime] = None
    oauth_provider: str
    failed_login_attempts: int
    lock_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime


class MeOut(BaseModel):
    id: int
    email: str
    role: str
    is_email_verified: bool
    oauth_provider: str
    last_login_at: Optional[datetime] = None
    customer: Optional[CustomerProfileOut] = None
    merchant_id: Optional[int] = None


class MeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)


class CustomerStatsOut(BaseModel):
    scans_count: int
    ratings_given_count: int
    favorites_count: int


class MerchantStatsOut(BaseModel):
    total_visits: int
    total_redemptions: int
    unique_customers: int
    rating_average: float
    rating_count: int


class MeStatsOut(BaseModel):
    customer: Optional[CustomerStatsOut] = None
    merchant: Optional[MerchantStatsOut] = None


class AdminAccountCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Role = Role.merchant
    is_email_verified: bool = False


class AdminAccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None
    is_email_verified: Optional[bool] = None
    role: Optional[Role] = None


class AccountListResponse(BaseModel):
    items: list[AccountOut]
    total: int
    page: int
    limit: int


class BlacklistRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
