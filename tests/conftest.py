"""
Shared test configuration and fixtures for wallet tests.

Tests run against SQLite (aiosqlite) in a per-test temporary file and fakeredis, so
no external services are needed. Set ``TEST_DATABASE_URL`` to run the database-backed
tests against another async database instead.
"""

import os

import fakeredis.aioredis
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from social.graze.wallet.app.config import Settings
from social.graze.wallet.identity.authenticator import SessionAuthenticator
from social.graze.wallet.identity.credentials import CredentialStore
from social.graze.wallet.identity.directory import (
    ChallengeContext,
    DatabaseAccountDirectory,
)
from social.graze.wallet.identity.issuer import SelfIssuedCredentialIssuer
from social.graze.wallet.identity.otp import MessageParameters, OTPChallengeManager
from social.graze.wallet.identity.share_request import JwtShareRequestDecoder
from social.graze.wallet.identity.vault import SeedVault
from social.graze.wallet.identity.wallet import WalletService
from social.graze.wallet.model.base import Base
from tests.test_helpers import (
    MockMetricsClient,
    MutableClock,
    RecordingTransport,
    generate_signing_key,
)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def encryption_key():
    return Fernet(Fernet.generate_key())


@pytest.fixture
def settings(encryption_key):
    return Settings(
        encryption_key=encryption_key,
        external_hostname="wallet.example.com",
        default_message="{{CODE}}",
        default_subject="Your code",
        metrics_backend="none",
    )


@pytest.fixture
def message_parameters():
    """Template whose rendered body is exactly the code."""
    return MessageParameters(message="{{CODE}}", subject="Your code")


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create async SQLAlchemy engine with all tables created."""
    database_url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path}/wallet.db"
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def database_session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def fake_redis():
    """Provide fake Redis client for unit tests."""
    redis_client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield redis_client
    await redis_client.flushall()
    await redis_client.aclose()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def metrics_client():
    return MockMetricsClient()


@pytest.fixture
def directory(database_session_maker, clock):
    return DatabaseAccountDirectory(
        database_session_maker, access_token_expiry=3600, clock=clock
    )


@pytest.fixture
def otp_manager(fake_redis, transport, clock):
    return OTPChallengeManager(fake_redis, transport, expiry=600, clock=clock)


@pytest.fixture
def seed_vault(database_session_maker, directory, encryption_key, clock):
    return SeedVault(database_session_maker, directory, encryption_key, clock=clock)


@pytest.fixture
def credential_store(database_session_maker, directory, clock):
    return CredentialStore(
        database_session_maker, directory, JwtShareRequestDecoder(), clock=clock
    )


@pytest.fixture
def credential_issuer(clock):
    return SelfIssuedCredentialIssuer(
        generate_signing_key(),
        "wallet.example.com",
        did_method="web",
        supported_did_methods=["elem", "web"],
        sdk_version="1.2.3",
        clock=clock,
    )


@pytest.fixture
def authenticator(
    fake_redis,
    directory,
    otp_manager,
    seed_vault,
    credential_store,
    credential_issuer,
    encryption_key,
):
    return SessionAuthenticator(
        fake_redis,
        directory,
        otp_manager,
        seed_vault,
        credential_store,
        credential_issuer,
        encryption_key,
    )


@pytest.fixture
def wallet_service(authenticator, credential_store, settings, metrics_client):
    return WalletService(
        authenticator,
        credential_store,
        MessageParameters(
            message=settings.default_message, subject=settings.default_subject
        ),
        supported_did_methods=settings.supported_did_methods,
        metrics_client=metrics_client,
    )


@pytest.fixture
def access_token_factory(directory):
    """Factory for an access token of a freshly confirmed account."""

    async def _factory(principal: str = "holder@example.com") -> str:
        handle = await directory.register_pending(principal)
        account_guid = await directory.confirm_registration(handle)
        return await directory.issue_access_token(
            ChallengeContext(account_guid=account_guid, principal=principal)
        )

    return _factory
