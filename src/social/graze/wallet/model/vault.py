"""Seed vault data model."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.wallet.model.base import Base, guidpk


class EncryptedSeed(Base):
    """Encrypted seed backup for an account.

    ``ciphertext`` is the caller's seed ciphertext wrapped once more with the service
    Fernet key. ``escrowed_secret`` optionally holds the key-derivation secret, wrapped
    the same way, so passwordless sign-in can hand it back.
    """

    __tablename__ = "wallet_encrypted_seeds"

    account_guid: Mapped[guidpk]
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    escrowed_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
