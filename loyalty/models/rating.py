from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import utc_now
from loyalty.core.db import Base, BigId


class Rating(Base):
    """Star rating left after a redemption. Immutable; only an admin may delete it."""

    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint("score >= 1 AND score <= 5", name="ratings_score_check"),
        # one rating per customer and merchant, however many redemptions they share
        UniqueConstraint("merchant_id", "customer_account_id", name="uq_ratings_merchant_customer"),
        UniqueConstraint("redemption_id", name="uq_ratings_redemption"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    merchant_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_account_id: Mapped[int] = mapped_column(
        BigId, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    redemption_id: Mapped[int] = mapped_column(BigId, ForeignKey("redemptions.id", ondelete="RESTRICT"), nullable=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
