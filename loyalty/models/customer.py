from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import utc_now
from loyalty.core.db import Base, BigId


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"
    __table_args__ = (
        CheckConstraint("scans_count >= 0", name="customer_profiles_scans_count_check"),
        CheckConstraint("ratings_given_count >= 0", name="customer_profiles_ratings_given_check"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # minted once at creation; no code path updates it
    qr_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    scans_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ratings_given_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # merchant ids, kept free of duplicates by the service layer
    favorite_merchant_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.last_name or "Customer"
