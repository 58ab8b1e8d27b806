from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from loyalty.schemas.promotions import PromotionOut


class MerchantBase(BaseModel):
    business_name: str = Field(min_length=2, max_length=255)
    business_type: str = Field(min_length=1, max_length=100)
    category_id: int
    short_description: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    primary_image: Optional[str] = Field(default=None, max_length=500)
    address: str = Field(min_length=1, max_length=255)
    postal_code: str = Field(min_length=1, max_length=10)
    city: str = Field(min_length=1, max_length=100)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class MerchantCreate(MerchantBase):
    model_config = ConfigDict(extra="forbid")

    opening_hours: Dict[str, Any] = Field(default_factory=dict)


class MerchantUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    business_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    business_type: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category_id: Optional[int] = None
    short_description: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    primary_image: Optional[str] = Field(default=None, max_length=500)
    address: Optional[str] = Field(default=None, min_length=1, max_length=255)
    postal_code: Optional[str] = Field(default=None, min_length=1, max_length=10)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    opening_hours: Optional[Dict[str, Any]] = None


class AdminMerchantUpdate(MerchantUpdate):
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None


class OpeningHoursIn(BaseModel):
    opening_hours: Dict[str, Any]


class ImageIn(BaseModel):
    url: str = Field(min_length=1, max_length=500)


class MerchantOut(MerchantBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    images: list[str] = Field(default_factory=list)
    opening_hours: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    is_verified: bool
    is_blacklisted: bool
    total_visits: int
    total_redemptions: int
    unique_customers: int
    rating_average: Decimal
    rating_count: int
    created_at: datetime


class MerchantDetailOut(MerchantOut):
    promotions: list[PromotionOut] = Field(default_factory=list)


class MerchantListResponse(BaseModel):
    items: list[MerchantOut]
    total: int
    page: int
    pages: int


class NearbyMerchantOut(BaseModel):
    merchant: MerchantOut
    distance_km: float


class NearbyResponse(BaseModel):
    latitude: float
    longitude: float
    radius_km: float
    total: int
    items: list[NearbyMerchantOut]
