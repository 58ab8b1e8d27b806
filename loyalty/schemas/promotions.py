from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PromotionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    starts_at: datetime
    ends_at: datetime
    is_active: bool = True


class PromotionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromotionOut(BaseModel):
    # built by hand in promotion_out; Promotion has methods named like the computed fields
    id: int
    merchant_id: int
    title: str
    description: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    is_active: bool
    usage_count: int
    unique_customers: int
    created_at: datetime

    # computed at response time
    is_valid: bool = False
    days_remaining: int = 0
