from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import utc_now
from loyalty.core.db import Base, BigId


class Merchant(Base):
    __tablename__ = "merchants"
    __table_args__ = (
        CheckConstraint("latitude >= -90 AND latitude <= 90", name="merchants_latitude_check"),
        CheckConstraint("longitude >= -180 AND longitude <= 180", name="merchants_longitude_check"),
        CheckConstraint("rating_average >= 0 AND rating_average <= 5", name="merchants_rating_average_check"),
        CheckConstraint("rating_count >= 0", name="merchants_rating_count_check"),
        CheckConstraint("total_redemptions >= 0", name="merchants_total_redemptions_check"),
        CheckConstraint("unique_customers >= 0", name="merchants_unique_customers_check"),
        Index("ix_merchants_city_active", "city", "is_active"),
        Index("ix_merchants_rating", "rating_average"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_type: Mapped[str] = mapped_column(String(100), nullable=False)
    category_id: Mapped[int] = mapped_column(BigId, ForeignKey("categories.id"), nullable=False, index=True)
    short_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    primary_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    # gallery urls; the cap is enforced by services.merchants.add_image
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    address: Mapped[str] = mapped_column(String(255), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(10), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    opening_hours: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blacklist_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    blacklisted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # denormalized counters, mutated only by the redemption/rating services
    total_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_redemptions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_average: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False, default=Decimal("0.00"))
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now(), onupdate=utc_now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_listed(self) -> bool:
        return self.is_active and not self.is_blacklisted and self.deleted_at is None
