"""
Seed Vault

Stores the caller's encrypted seed against the account behind an access token. The
vault never sees plaintext key material: what it receives is already encrypted under
the session secret, and it wraps that ciphertext once more with the service Fernet key
before it reaches the database.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cryptography.fernet import Fernet
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.wallet.identity.directory import AccountDirectory
from social.graze.wallet.identity.errors import SeedNotFound
from social.graze.wallet.model.vault import EncryptedSeed

logger = logging.getLogger(__name__)


class SeedVault:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        directory: AccountDirectory,
        encryption_key: Fernet,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.directory = directory
        self.encryption_key = encryption_key
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _wrap(self, value: str) -> str:
        return self.encryption_key.encrypt(value.encode("utf-8")).decode("ascii")

    def _unwrap(self, value: str) -> str:
        return self.encryption_key.decrypt(value.encode("ascii")).decode("utf-8")

    async def store(
        self, access_token: str, ciphertext: str, secret: Optional[str] = None
    ) -> None:
        """
        Associate a seed ciphertext (and optionally its secret) with the token's account.

        Storing an empty ciphertext removes the backup. When ``secret`` is omitted an
        already escrowed secret is kept.

        Raises:
            Unauthenticated: If the access token is not currently valid
        """
        account_guid = await self.directory.resolve_access_token(access_token)
        now = self.clock()

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                if not ciphertext:
                    await database_session.execute(
                        delete(EncryptedSeed).where(
                            EncryptedSeed.account_guid == account_guid
                        )
                    )
                    logger.info("Cleared seed backup for %s", account_guid)
                    return

                encrypted_seed: Optional[EncryptedSeed] = await database_session.get(
                    EncryptedSeed, account_guid
                )
                if encrypted_seed is None:
                    database_session.add(
                        EncryptedSeed(
                            account_guid=account_guid,
                            ciphertext=self._wrap(ciphertext),
                            escrowed_secret=self._wrap(secret) if secret else None,
                            updated_at=now,
                        )
                    )
                else:
                    encrypted_seed.ciphertext = self._wrap(ciphertext)
                    encrypted_seed.updated_at = now
                    if secret:
                        encrypted_seed.escrowed_secret = self._wrap(secret)

    async def _load(self, access_token: str) -> Optional[EncryptedSeed]:
        account_guid = await self.directory.resolve_access_token(access_token)
        async with self.database_session_maker() as database_session:
            return await database_session.get(EncryptedSeed, account_guid)

    async def retrieve(self, access_token: str) -> str:
        """
        Raises:
            Unauthenticated: If the access token is not currently valid
            SeedNotFound: If no seed is stored for the account
        """
        encrypted_seed = await self._load(access_token)
        if encrypted_seed is None:
            raise SeedNotFound()
        return self._unwrap(encrypted_seed.ciphertext)

    async def retrieve_secret(self, access_token: str) -> Optional[str]:
        encrypted_seed = await self._load(access_token)
        if encrypted_seed is None or encrypted_seed.escrowed_secret is None:
            return None
        return self._unwrap(encrypted_seed.escrowed_secret)

    async def rotate(self, access_token: str, old_ciphertext: str, new_ciphertext: str) -> None:
        """Replace the stored ciphertext. ``old_ciphertext`` is only checked for logging."""
        try:
            current = await self.retrieve(access_token)
        except SeedNotFound:
            current = None

        if old_ciphertext and current is not None and current != old_ciphertext:
            logger.warning("Rotating seed whose stored ciphertext does not match the caller's")

        await self.store(access_token, new_ciphertext)
