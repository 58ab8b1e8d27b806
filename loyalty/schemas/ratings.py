from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictInt


class RateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    redemption_id: int
    # range is checked by the service so the error carries its own code
    score: StrictInt


class RatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    merchant_id: int
    customer_account_id: int
    redemption_id: int
    score: int
    created_at: datetime


class MerchantRatingItem(RatingOut):
    customer_name: Optional[str] = None


class MyRatingItem(RatingOut):
    merchant_name: str


class RatingListResponse(BaseModel):
    items: list[MerchantRatingItem]
    total: int
    page: int
    limit: int
