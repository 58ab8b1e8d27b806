from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.core.clock import as_utc, utc_now
from loyalty.core.db import Base, BigId


class Role(str, Enum):
    admin = "admin"
    merchant = "merchant"
    customer = "customer"


class OAuthProvider(str, Enum):
    local = "local"
    google = "google"
    apple = "apple"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("role IN ('admin','merchant','customer')", name="accounts_role_check"),
        CheckConstraint("oauth_provider IN ('local','google','apple')", name="accounts_oauth_provider_check"),
        CheckConstraint("failed_login_attempts >= 0", name="accounts_failed_login_attempts_check"),
        # email is unique among live (not soft-deleted) accounts only
        Index(
            "uq_accounts_email_live",
            "email",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(16), nullable=False)  # admin/merchant/customer

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # blacklist
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blacklist_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    blacklisted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # OAuth linkage
    oauth_provider: Mapped[str] = mapped_column(String(16), nullable=False, default=OAuthProvider.local.value)
    google_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    apple_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    # single active refresh token, replaced on every issuance
    refresh_token: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    password_reset_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    password_reset_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now(), onupdate=utc_now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    def is_locked(self, now: datetime) -> bool:
        lock_until = as_utc(self.lock_until)
        return lock_until is not None and lock_until > now
