from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RedeemRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    qr_token: str = Field(min_length=1, max_length=64)
    promotion_id: int


class RedemptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_account_id: int
    merchant_id: int
    promotion_id: int
    redeemed_at: datetime
    rated: bool


class RedemptionHistoryItem(RedemptionOut):
    promotion_title: str
    customer_name: Optional[str] = None
    merchant_name: Optional[str] = None


class RedemptionHistoryResponse(BaseModel):
    items: list[RedemptionHistoryItem]
    total: int
    page: int
    limit: int
