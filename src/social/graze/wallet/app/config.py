"""
Configuration Module for the Wallet Service

This module defines the configuration system for the identity wallet service, using
Pydantic for settings validation and dependency injection through AppKeys.

The Settings class is loaded from environment variables with defaults suitable for
development environments. Process-wide values such as the supported DID methods and
the SDK version live here and are injected at construction time; they are never
looked up from module globals at call time.

Key configuration areas include:
- Service identification and networking
- Database and cache connections
- Cryptographic materials (at-rest encryption, credential signing)
- OTP and access token lifetimes
- Monitoring and observability
"""

import base64
import logging
from typing import Final, List, Optional

import redis.asyncio as redis
from aiohttp import web
from cryptography.fernet import Fernet
from jwcrypto import jwk
from pydantic import (
    AliasChoices,
    Field,
    PostgresDsn,
    RedisDsn,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from ulid import ULID

from social.graze.wallet.app.metrics import MetricsClient
from social.graze.wallet.identity.helpers import extract_sdk_version


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the wallet service.

    Environment variables are mapped to fields automatically, with aliases where a
    more conventional variable name exists (for example ``DATABASE_URL`` for
    ``pg_dsn``).
    """

    model_config = SettingsConfigDict(
        arbitrary_types_allowed=True, populate_by_name=True
    )

    debug: bool = False
    """
    Enable debug mode for verbose logging and detailed error responses.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5200)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    external_hostname: str = "wallet_service"
    """
    Public hostname for the service. Used to build the DID of self-issued credentials.
    Set with EXTERNAL_HOSTNAME environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/2?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for OTP challenges and pending sign-up/sign-in attempts.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/wallet",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string for accounts, access tokens, seeds and credentials.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    encryption_key: Fernet = Fernet(Fernet.generate_key())
    """
    Fernet key wrapping encrypted seeds, escrowed secrets and pending-attempt secrets
    at rest. Can be set to a Fernet object or base64-encoded key string.
    Set with ENCRYPTION_KEY environment variable.
    """

    signing_key_file: Optional[str] = None
    """
    Path to a JWK (JSON) used to sign self-issued enrollment credentials. When unset,
    an ephemeral P-256 key is generated at startup.
    Set with SIGNING_KEY_FILE environment variable.
    """

    otp_expiry: int = 600  # 10 minutes
    """
    Lifetime in seconds of an OTP challenge and its pending attempt.
    Set with OTP_EXPIRY environment variable.
    """

    otp_length: int = 6
    """
    Number of characters in a generated OTP code.
    Set with OTP_LENGTH environment variable.
    """

    otp_alphanumeric: bool = False
    """
    Generate upper-case alphanumeric codes instead of digits.
    Set with OTP_ALPHANUMERIC environment variable.
    """

    access_token_expiry: int = 3600  # 1 hour
    """
    Lifetime in seconds of access tokens issued on confirmation.
    Set with ACCESS_TOKEN_EXPIRY environment variable.
    """

    token_purge_interval: int = 300
    """
    Seconds between runs of the expired access token purge task.
    Set with TOKEN_PURGE_INTERVAL environment variable.
    """

    supported_did_methods: List[str] = ["elem", "jolo", "polygon", "web"]
    """
    DID methods accepted for wallet identities.
    Set with SUPPORTED_DID_METHODS environment variable as a JSON list.
    """

    did_method: str = "web"
    """
    DID method used for self-issued enrollment credentials. Must be supported.
    Set with DID_METHOD environment variable.
    """

    delivery_webhook_url: Optional[str] = None
    """
    Mail/SMS relay endpoint that receives rendered OTP messages. When unset, messages
    are only logged (development mode).
    Set with DELIVERY_WEBHOOK_URL environment variable.
    """

    default_message: str = "Your verification code is: {{CODE}}"
    """Message used when a caller does not provide its own template."""

    default_subject: str = "Verification code"
    """Subject used when a caller does not provide its own template."""

    metrics_backend: str = "telegraf"
    """
    Metrics backend: 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    sdk_version: str = Field(default_factory=extract_sdk_version)
    """Version of the installed distribution, reported with credentials and metrics."""

    @field_validator("encryption_key", mode="before")
    @classmethod
    def decode_encryption_key(cls, v) -> Fernet:
        """
        Accept either an existing Fernet object or a base64-encoded Fernet key.

        Raises:
            ValueError: If the input is neither a Fernet object nor a valid base64 key
        """
        if isinstance(v, Fernet):
            return v
        elif isinstance(v, str):
            key_data = base64.b64decode(v)
            return Fernet(key_data)
        raise ValueError(
            "encryption_key must be a Fernet object or a base64-encoded key string"
        )

    @field_validator("did_method")
    @classmethod
    def check_did_method(cls, v: str, info) -> str:
        supported = info.data.get("supported_did_methods") or []
        if v not in supported:
            raise ValueError(f"did_method {v!r} is not in supported_did_methods")
        return v

    def load_signing_key(self) -> jwk.JWK:
        """Load the credential signing key, or generate an ephemeral one."""
        if self.signing_key_file is None:
            logger.warning("No signing key configured, generating an ephemeral key")
            return jwk.JWK.generate(
                kty="EC", crv="P-256", kid=str(ULID()), alg="ES256"
            )
        with open(self.signing_key_file) as fd:
            return jwk.JWK.from_json(fd.read())


OTP_CHALLENGE_PREFIX = "wallet:otp"
"""
Redis key prefix for OTP challenges. ``{prefix}:{token}`` holds the challenge hash,
``{prefix}:{token}:consumed`` the single-use marker and ``{prefix}:principal:{p}`` the
latest pending token for a principal.
"""

PENDING_ATTEMPT_PREFIX = "wallet:attempt"
"""Redis key prefix for pending sign-up/sign-in attempts keyed by correlation token."""

# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""
