from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import as_utc, utc_now
from loyalty.core.db import Base, BigId


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="promotions_window_check"),
        CheckConstraint("usage_count >= 0", name="promotions_usage_count_check"),
        CheckConstraint("unique_customers >= 0", name="promotions_unique_customers_check"),
        Index("ix_promotions_window", "starts_at", "ends_at"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    merchant_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # manual switch, independent of the date window
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now(), onupdate=utc_now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_valid(self, now: datetime) -> bool:
        """Active flag set and ``now`` inside [starts_at, ends_at], both bounds inclusive."""
        return bool(self.is_active) and as_utc(self.starts_at) <= now <= as_utc(self.ends_at)

    def days_remaining(self, now: datetime) -> int:
        seconds = (as_utc(self.ends_at) - now).total_seconds()
        return math.ceil(seconds / 86400)
