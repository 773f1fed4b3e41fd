"""
Account Directory

The account directory owns principals, their enrollment state and the bearer access
tokens issued to them. ``AccountDirectory`` is the contract the session authenticator
depends on; ``DatabaseAccountDirectory`` implements it on top of the SQLAlchemy models
in ``social.graze.wallet.model.account``.

Database failures are surfaced as ``DirectoryError`` so callers see the same error kind
regardless of which directory backs the service.
"""

import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from social.graze.wallet.identity.errors import (
    AlreadyRegistered,
    DirectoryError,
    Unauthenticated,
    UnknownPrincipal,
)
from social.graze.wallet.model.account import (
    ACCOUNT_STATUS_CONFIRMED,
    ACCOUNT_STATUS_PENDING,
    AccessToken,
    Account,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengeContext:
    """Result of ``authenticate``: the confirmed account a sign-in is for."""

    account_guid: str
    principal: str


def digest_access_token(access_token: str) -> str:
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()


class AccountDirectory(ABC):
    """Contract for the account directory collaborator."""

    @abstractmethod
    async def register_pending(self, principal: str) -> str:
        """Register (or refresh) a pending account and return its registration handle.

        Raises:
            AlreadyRegistered: If a confirmed account exists for the principal
        """

    @abstractmethod
    async def confirm_registration(self, registration_handle: str) -> str:
        """Confirm a pending registration and return the account guid. Idempotent."""

    @abstractmethod
    async def authenticate(self, principal: str) -> ChallengeContext:
        """Look up the confirmed account for a sign-in.

        Raises:
            UnknownPrincipal: If no confirmed account exists
        """

    @abstractmethod
    async def issue_access_token(self, context: ChallengeContext) -> str:
        """Issue a fresh bearer access token for the account."""

    @abstractmethod
    async def revoke(self, access_token: str) -> None:
        """Revoke an access token. Revoking twice is not an error."""

    @abstractmethod
    async def resolve_access_token(self, access_token: Optional[str]) -> str:
        """Return the account guid for a currently valid access token.

        Raises:
            Unauthenticated: If the token is missing, unknown, revoked or expired
        """


class DatabaseAccountDirectory(AccountDirectory):
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        access_token_expiry: int = 3600,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.access_token_expiry = access_token_expiry
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def register_pending(self, principal: str) -> str:
        now = self.clock()
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    account_stmt = select(Account).where(Account.principal == principal)
                    account: Optional[Account] = (
                        await database_session.scalars(account_stmt)
                    ).first()

                    if account is not None and account.status == ACCOUNT_STATUS_CONFIRMED:
                        raise AlreadyRegistered()

                    if account is not None:
                        return account.guid

                    guid = str(ULID())
                    database_session.add(
                        Account(
                            guid=guid,
                            principal=principal,
                            status=ACCOUNT_STATUS_PENDING,
                            created_at=now,
                        )
                    )
                    return guid
        except SQLAlchemyError as e:
            logger.exception("register_pending: database error")
            raise DirectoryError(type(e).__name__) from e

    async def confirm_registration(self, registration_handle: str) -> str:
        now = self.clock()
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    account: Optional[Account] = await database_session.get(
                        Account, registration_handle
                    )
                    if account is None:
                        raise DirectoryError("registration not found")

                    if account.status != ACCOUNT_STATUS_CONFIRMED:
                        account.status = ACCOUNT_STATUS_CONFIRMED
                        account.confirmed_at = now
                    return account.guid
        except SQLAlchemyError as e:
            logger.exception("confirm_registration: database error")
            raise DirectoryError(type(e).__name__) from e

    async def authenticate(self, principal: str) -> ChallengeContext:
        try:
            async with self.database_session_maker() as database_session:
                account_stmt = select(Account).where(
                    Account.principal == principal,
                    Account.status == ACCOUNT_STATUS_CONFIRMED,
                )
                account: Optional[Account] = (
                    await database_session.scalars(account_stmt)
                ).first()
        except SQLAlchemyError as e:
            logger.exception("authenticate: database error")
            raise DirectoryError(type(e).__name__) from e

        if account is None:
            raise UnknownPrincipal()
        return ChallengeContext(account_guid=account.guid, principal=account.principal)

    async def issue_access_token(self, context: ChallengeContext) -> str:
        now = self.clock()
        access_token = secrets.token_urlsafe(32)
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(
                        AccessToken(
                            token_digest=digest_access_token(access_token),
                            account_guid=context.account_guid,
                            created_at=now,
                            expires_at=now + timedelta(0, self.access_token_expiry),
                        )
                    )
        except SQLAlchemyError as e:
            logger.exception("issue_access_token: database error")
            raise DirectoryError(type(e).__name__) from e
        return access_token

    async def revoke(self, access_token: str) -> None:
        now = self.clock()
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    revoke_stmt = (
                        update(AccessToken)
                        .where(
                            AccessToken.token_digest == digest_access_token(access_token),
                            AccessToken.revoked_at.is_(None),
                        )
                        .values(revoked_at=now)
                    )
                    await database_session.execute(revoke_stmt)
        except SQLAlchemyError as e:
            logger.exception("revoke: database error")
            raise DirectoryError(type(e).__name__) from e

    async def resolve_access_token(self, access_token: Optional[str]) -> str:
        if not access_token:
            raise Unauthenticated()

        now = self.clock()
        try:
            async with self.database_session_maker() as database_session:
                token_stmt = select(AccessToken.account_guid).where(
                    AccessToken.token_digest == digest_access_token(access_token),
                    AccessToken.revoked_at.is_(None),
                    AccessToken.expires_at > now,
                )
                account_guid: Optional[str] = (
                    await database_session.scalars(token_stmt)
                ).first()
        except SQLAlchemyError as e:
            logger.exception("resolve_access_token: database error")
            raise DirectoryError(type(e).__name__) from e

        if account_guid is None:
            raise Unauthenticated()
        return account_guid
