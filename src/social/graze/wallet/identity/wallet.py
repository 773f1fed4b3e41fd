"""
Wallet Facade

``WalletService`` is the public entry point of the wallet session layer. It exposes the
sign-up/sign-in verbs and the credential verbs as single calls, hides the session state
machine and records metrics for every call.

Confirmations return a ``Wallet``: a handle bound to one authenticated session that
carries the access token, the encrypted seed and the credential verbs, so callers do not
pass tokens around by hand::

    token = await service.sign_up("a@example.com", password)
    wallet = await service.confirm_sign_up(token, code)
    await wallet.save_credentials([credential])
    credentials = await wallet.get_credentials()
    await wallet.sign_out()
"""

import logging
from time import time
from typing import Any, Awaitable, Iterable, List, Mapping, Optional, TypeVar, Union

import redis.asyncio as redis
import sentry_sdk
from aiohttp import ClientSession
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.wallet.app.config import Settings
from social.graze.wallet.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.wallet.identity.authenticator import (
    ConfirmOptions,
    IdentitySession,
    SessionAuthenticator,
    SignUpOptions,
)
from social.graze.wallet.identity.credentials import CredentialRecord, CredentialStore
from social.graze.wallet.identity.directory import DatabaseAccountDirectory
from social.graze.wallet.identity.errors import WalletError
from social.graze.wallet.identity.helpers import validate_did_method_supported
from social.graze.wallet.identity.issuer import SelfIssuedCredentialIssuer
from social.graze.wallet.identity.otp import MessageParameters, OTPChallengeManager
from social.graze.wallet.identity.share_request import JwtShareRequestDecoder
from social.graze.wallet.identity.transport import (
    LoggingTransport,
    OTPDeliveryTransport,
    WebhookTransport,
)
from social.graze.wallet.identity.vault import SeedVault

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Wallet:
    """Handle bound to one authenticated session."""

    def __init__(self, service: "WalletService", session: IdentitySession) -> None:
        self.service = service
        self.session = session

    @property
    def access_token(self) -> str:
        return self.session.access_token

    @property
    def encrypted_seed(self) -> Optional[str]:
        return self.session.encrypted_seed

    @property
    def password(self) -> Optional[str]:
        return self.session.password

    @property
    def did(self) -> Optional[str]:
        return self.session.did

    @property
    def credentials(self) -> List[CredentialRecord]:
        return self.session.credentials

    async def save_credentials(
        self, documents: Iterable[Mapping[str, Any]]
    ) -> List[CredentialRecord]:
        return await self.service.save_credentials(self.access_token, documents)

    async def get_credentials(
        self, share_request_token: Optional[str] = None
    ) -> List[CredentialRecord]:
        return await self.service.get_credentials(self.access_token, share_request_token)

    async def delete_credential(self, credential_id: str) -> None:
        await self.service.delete_credential(self.access_token, credential_id)

    async def delete_all_credentials(self) -> None:
        await self.service.delete_all_credentials(self.access_token)

    async def store_encrypted_seed(self, old_ciphertext: str, new_ciphertext: str) -> None:
        await self.service.store_encrypted_seed(
            old_ciphertext, new_ciphertext, self.access_token
        )
        self.session.encrypted_seed = new_ciphertext or None

    async def sign_out(self) -> None:
        await self.service.sign_out(self.session)


class WalletService:
    def __init__(
        self,
        authenticator: SessionAuthenticator,
        credential_store: CredentialStore,
        default_message_parameters: MessageParameters,
        supported_did_methods: Iterable[str] = ("web",),
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.authenticator = authenticator
        self.credential_store = credential_store
        self.default_message_parameters = default_message_parameters
        self.supported_did_methods = tuple(supported_did_methods)
        self.metrics_client = metrics_client or NoOpMetricsClient()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database_session_maker: async_sessionmaker[AsyncSession],
        redis_client: redis.Redis,
        http_session: Optional[ClientSession] = None,
        transport: Optional[OTPDeliveryTransport] = None,
        metrics_client: Optional[MetricsClient] = None,
    ) -> "WalletService":
        """Wire the default database, Redis and HTTP backed collaborators."""
        if transport is None:
            if settings.delivery_webhook_url is not None and http_session is not None:
                transport = WebhookTransport(http_session, settings.delivery_webhook_url)
            else:
                transport = LoggingTransport()

        directory = DatabaseAccountDirectory(
            database_session_maker, access_token_expiry=settings.access_token_expiry
        )
        otp_manager = OTPChallengeManager(
            redis_client,
            transport,
            expiry=settings.otp_expiry,
            code_length=settings.otp_length,
            alphanumeric=settings.otp_alphanumeric,
        )
        seed_vault = SeedVault(
            database_session_maker, directory, settings.encryption_key
        )
        credential_store = CredentialStore(
            database_session_maker, directory, JwtShareRequestDecoder()
        )
        credential_issuer = SelfIssuedCredentialIssuer(
            settings.load_signing_key(),
            settings.external_hostname,
            did_method=settings.did_method,
            supported_did_methods=settings.supported_did_methods,
            sdk_version=settings.sdk_version,
        )
        authenticator = SessionAuthenticator(
            redis_client,
            directory,
            otp_manager,
            seed_vault,
            credential_store,
            credential_issuer,
            settings.encryption_key,
        )
        return cls(
            authenticator,
            credential_store,
            MessageParameters(
                message=settings.default_message, subject=settings.default_subject
            ),
            supported_did_methods=settings.supported_did_methods,
            metrics_client=metrics_client,
        )

    async def _instrument(self, operation: str, call: Awaitable[T]) -> T:
        start_time = time()
        outcome = "ok"
        try:
            return await call
        except WalletError as e:
            outcome = type(e).__name__
            raise
        except Exception as e:
            outcome = "exception"
            sentry_sdk.capture_exception(e)
            logger.exception("Unexpected error in %s", operation)
            raise
        finally:
            self.metrics_client.timer(
                f"wallet.{operation}.time",
                time() - start_time,
            )
            self.metrics_client.increment(
                f"wallet.{operation}.count",
                1,
                tag_dict={"outcome": outcome},
            )

    async def sign_up(
        self,
        principal: str,
        secret: Optional[str] = None,
        options: Optional[SignUpOptions] = None,
        message_parameters: Optional[MessageParameters] = None,
    ) -> str:
        """
        Start enrollment and return the correlation token for ``confirm_sign_up``.

        Raises:
            InvalidPrincipal, UnsupportedDidMethod, AlreadyRegistered, InvalidTemplate,
            DeliveryError, DirectoryError
        """
        did_method = options.did_method if options is not None else None
        if did_method is not None:
            validate_did_method_supported(did_method, self.supported_did_methods)
        return await self._instrument(
            "sign_up",
            self.authenticator.sign_up(
                principal,
                secret,
                message_parameters or self.default_message_parameters,
                did_method=did_method,
            ),
        )

    async def confirm_sign_up(
        self,
        correlation_token: str,
        code: str,
        options: Optional[ConfirmOptions] = None,
    ) -> Wallet:
        session = await self._instrument(
            "confirm_sign_up",
            self.authenticator.confirm_sign_up(correlation_token, code, options),
        )
        return Wallet(self, session)

    async def sign_in(
        self,
        principal: str,
        message_parameters: Optional[MessageParameters] = None,
    ) -> str:
        """
        Raises:
            InvalidPrincipal, UnknownPrincipal, InvalidTemplate, DeliveryError, DirectoryError
        """
        return await self._instrument(
            "sign_in",
            self.authenticator.sign_in(
                principal, message_parameters or self.default_message_parameters
            ),
        )

    async def confirm_sign_in(
        self,
        correlation_token: str,
        code: str,
        options: Optional[ConfirmOptions] = None,
    ) -> Wallet:
        session = await self._instrument(
            "confirm_sign_in",
            self.authenticator.confirm_sign_in(correlation_token, code, options),
        )
        return Wallet(self, session)

    async def sign_out(self, session: Union[IdentitySession, str]) -> None:
        """End a session. Accepts the session itself or its bare access token."""
        if isinstance(session, IdentitySession):
            await self._instrument("sign_out", self.authenticator.sign_out(session))
        else:
            await self._instrument("sign_out", self.authenticator.revoke(session))

    async def store_encrypted_seed(
        self, old_ciphertext: str, new_ciphertext: str, access_token: str
    ) -> None:
        await self._instrument(
            "store_encrypted_seed",
            self.authenticator.store_encrypted_seed(
                old_ciphertext, new_ciphertext, access_token
            ),
        )

    async def save_credentials(
        self, access_token: str, documents: Iterable[Mapping[str, Any]]
    ) -> List[CredentialRecord]:
        return await self._instrument(
            "save_credentials", self.credential_store.save(access_token, documents)
        )

    async def get_credentials(
        self, access_token: str, share_request_token: Optional[str] = None
    ) -> List[CredentialRecord]:
        return await self._instrument(
            "get_credentials",
            self.credential_store.list(access_token, share_request_token),
        )

    async def delete_credential(self, access_token: str, credential_id: str) -> None:
        await self._instrument(
            "delete_credential",
            self.credential_store.delete_one(access_token, credential_id),
        )

    async def delete_all_credentials(self, access_token: str) -> None:
        await self._instrument(
            "delete_all_credentials", self.credential_store.delete_all(access_token)
        )
