import argparse
import asyncio
import base64
from datetime import datetime, timezone
import logging

from cryptography.fernet import Fernet
from jwcrypto import jwk
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from ulid import ULID

from social.graze.wallet.app.config import Settings
from social.graze.wallet.app.tasks import purge_expired_access_tokens

logger = logging.getLogger(__name__)


async def genJwk() -> None:
    key = jwk.JWK.generate(kty="EC", crv="P-256", kid=str(ULID()), alg="ES256")
    print(key.export(private_key=True))


async def genCryptoKey() -> None:
    key = Fernet.generate_key()
    print(base64.b64encode(key).decode("utf-8"))


async def purgeTokens() -> None:
    settings = Settings()  # type: ignore
    engine = create_async_engine(str(settings.pg_dsn))
    try:
        database_session_maker = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        purged = await purge_expired_access_tokens(
            database_session_maker, datetime.now(timezone.utc)
        )
        print(f"Purged {purged} access tokens")
    finally:
        await engine.dispose()


async def realMain() -> None:
    parser = argparse.ArgumentParser(prog="walletutil", description="Wallet utilities")

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-jwk", help="Generate a credential signing JWK")
    _ = subparsers.add_parser("gen-crypto", help="Generate an encryption key")
    _ = subparsers.add_parser(
        "purge-tokens", help="Delete expired and revoked access tokens now"
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-jwk":
        await genJwk()
    elif command == "gen-crypto":
        await genCryptoKey()
    elif command == "purge-tokens":
        await purgeTokens()


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
