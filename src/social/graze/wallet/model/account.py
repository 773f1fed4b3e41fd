"""Account directory data models.

Provides SQLAlchemy models for wallet accounts and the bearer access tokens issued to
them when an OTP challenge is confirmed.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.wallet.model.base import Base, guidpk, str512


ACCOUNT_STATUS_PENDING = "pending"
ACCOUNT_STATUS_CONFIRMED = "confirmed"


class Account(Base):
    """A wallet account keyed by principal identifier (email or phone number).

    Accounts are created ``pending`` by sign-up and become ``confirmed`` once the
    sign-up OTP is verified.
    """

    __tablename__ = "wallet_accounts"

    guid: Mapped[guidpk]
    principal: Mapped[str512]
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_wallet_accounts_principal", "principal", unique=True),
    )


class AccessToken(Base):
    """Bearer access token bound to an account.

    The token itself is never stored; ``token_digest`` is its SHA-256 hex digest.
    A token is valid while unrevoked and unexpired.
    """

    __tablename__ = "wallet_access_tokens"

    token_digest: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_guid: Mapped[str512]
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_wallet_access_tokens_account", "account_guid"),
        Index("idx_wallet_access_tokens_expires", "expires_at"),
    )
