from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import utc_now
from loyalty.core.db import Base, BigId


class Redemption(Base):
    """A merchant applying one promotion to one customer's QR code. Never soft-deleted."""

    __tablename__ = "redemptions"
    __table_args__ = (
        # one redemption per customer and promotion, ever
        UniqueConstraint("customer_account_id", "promotion_id", name="uq_redemptions_customer_promotion"),
        Index("ix_redemptions_customer_merchant", "customer_account_id", "merchant_id"),
        Index("ix_redemptions_merchant_redeemed_at", "merchant_id", "redeemed_at"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    customer_account_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    merchant_id: Mapped[int] = mapped_column(BigId, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    promotion_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    rated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
