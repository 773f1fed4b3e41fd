"""Credential store data model."""
from datetime import datetime
from typing import Any, List

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.wallet.model.base import Base, str512


class StoredCredential(Base):
    """A credential record owned by one account.

    ``seq`` preserves insertion order. Credential ids are unique per account only.
    """

    __tablename__ = "wallet_credentials"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_guid: Mapped[str512]
    credential_id: Mapped[str512]
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    types: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "account_guid", "credential_id", name="uq_wallet_credentials_account_id"
        ),
        Index("idx_wallet_credentials_account", "account_guid"),
    )
