"""
Session Authenticator

Orchestrates the two-phase OTP flows that turn a principal identifier into an
authenticated wallet session:

1. Initiation (``sign_up`` / ``sign_in``): register or look up the account, issue an OTP
   challenge and record a pending attempt keyed by the challenge's correlation token.
2. Confirmation (``confirm_sign_up`` / ``confirm_sign_in``): verify the OTP, obtain an
   access token from the directory and bind the encrypted seed to the new session.

States and legal transitions::

    NO_SESSION -> PENDING_SIGN_UP -> AUTHENTICATED
    NO_SESSION -> PENDING_SIGN_IN -> AUTHENTICATED
    AUTHENTICATED -> NO_SESSION

Pending attempts live in Redis with the OTP lifetime as TTL. An attempt's state decides
which confirmation may complete it: confirming a sign-in token as a sign-up (or a token
that was never issued) fails exactly like a wrong code.

Any failure after the OTP was consumed revokes the access token issued on the way and
releases the OTP, so the caller can retry the same code until the challenge expires.
"""

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from cryptography.fernet import Fernet
from pydantic import BaseModel

from social.graze.wallet.app.config import PENDING_ATTEMPT_PREFIX
from social.graze.wallet.identity.credentials import CredentialRecord, CredentialStore
from social.graze.wallet.identity.crypto import encrypt_seed, generate_secret, generate_seed
from social.graze.wallet.identity.directory import AccountDirectory, ChallengeContext
from social.graze.wallet.identity.errors import (
    InvalidPrincipal,
    SeedNotFound,
    VerificationFailed,
)
from social.graze.wallet.identity.issuer import CredentialIssuer
from social.graze.wallet.identity.otp import MessageParameters, OTPChallengeManager
from social.graze.wallet.identity.helpers import normalize_redis_string
from social.graze.wallet.identity.vault import SeedVault

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+[1-9][0-9]{6,14}$")


class AuthState(str, enum.Enum):
    NO_SESSION = "no_session"
    PENDING_SIGN_UP = "pending_sign_up"
    PENDING_SIGN_IN = "pending_sign_in"
    AUTHENTICATED = "authenticated"


LEGAL_TRANSITIONS = {
    AuthState.NO_SESSION: frozenset(
        {AuthState.PENDING_SIGN_UP, AuthState.PENDING_SIGN_IN}
    ),
    AuthState.PENDING_SIGN_UP: frozenset({AuthState.AUTHENTICATED}),
    AuthState.PENDING_SIGN_IN: frozenset({AuthState.AUTHENTICATED}),
    AuthState.AUTHENTICATED: frozenset({AuthState.NO_SESSION}),
}


class IllegalTransition(Exception):
    def __init__(self, current: AuthState, target: AuthState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition {current.value} -> {target.value}")


def transition(current: AuthState, target: AuthState) -> AuthState:
    if target not in LEGAL_TRANSITIONS[current]:
        raise IllegalTransition(current, target)
    return target


def validate_principal(principal: str) -> str:
    principal = principal.strip() if isinstance(principal, str) else ""
    if EMAIL_PATTERN.match(principal):
        return principal.lower()
    if PHONE_PATTERN.match(principal):
        return principal
    raise InvalidPrincipal()


class SignUpOptions(BaseModel):
    did_method: Optional[str] = None


class ConfirmOptions(BaseModel):
    skip_backup_encrypted_seed: bool = False
    skip_backup_credentials: bool = False
    issue_signup_credential: bool = False


@dataclass(frozen=True)
class PendingAttempt:
    state: AuthState
    principal: str
    account_guid: str
    sealed_secret: str = ""
    did_method: str = ""


@dataclass
class IdentitySession:
    """An authenticated wallet session.

    ``encrypted_seed`` is None only when no seed backup exists (enrollment skipped it);
    the caller is then expected to supply the seed and call ``store_encrypted_seed``.
    """

    account_guid: str
    principal: str
    access_token: str
    encrypted_seed: Optional[str] = None
    password: Optional[str] = None
    did: Optional[str] = None
    credentials: List[CredentialRecord] = field(default_factory=list)
    state: AuthState = AuthState.AUTHENTICATED


class SessionAuthenticator:
    def __init__(
        self,
        redis_client: redis.Redis,
        directory: AccountDirectory,
        otp_manager: OTPChallengeManager,
        seed_vault: SeedVault,
        credential_store: CredentialStore,
        credential_issuer: CredentialIssuer,
        encryption_key: Fernet,
    ) -> None:
        self.redis_client = redis_client
        self.directory = directory
        self.otp_manager = otp_manager
        self.seed_vault = seed_vault
        self.credential_store = credential_store
        self.credential_issuer = credential_issuer
        self.encryption_key = encryption_key

    @staticmethod
    def attempt_key(correlation_token: str) -> str:
        return f"{PENDING_ATTEMPT_PREFIX}:{correlation_token}"

    async def _record_attempt(self, correlation_token: str, attempt: PendingAttempt) -> None:
        await self.redis_client.hset(
            self.attempt_key(correlation_token),
            mapping={
                "state": attempt.state.value,
                "principal": attempt.principal,
                "account_guid": attempt.account_guid,
                "sealed_secret": attempt.sealed_secret,
                "did_method": attempt.did_method,
            },
        )
        await self.redis_client.expire(
            self.attempt_key(correlation_token), self.otp_manager.expiry
        )

    async def load_attempt(self, correlation_token: str) -> Optional[PendingAttempt]:
        values = await self.redis_client.hgetall(self.attempt_key(correlation_token))
        if not values:
            return None
        fields: Dict[str, Any] = {
            normalize_redis_string(key): normalize_redis_string(value)
            for key, value in values.items()
        }
        return PendingAttempt(
            state=AuthState(fields["state"]),
            principal=fields["principal"],
            account_guid=fields["account_guid"],
            sealed_secret=fields.get("sealed_secret", ""),
            did_method=fields.get("did_method", ""),
        )

    async def sign_up(
        self,
        principal: str,
        secret: Optional[str],
        message_parameters: MessageParameters,
        did_method: Optional[str] = None,
    ) -> str:
        """
        Register a pending account and send the sign-up code.

        ``did_method`` selects the method of the DID issued on confirmation; the
        issuer's default applies when it is None.
        """
        principal = validate_principal(principal)
        if not secret:
            secret = generate_secret()

        registration_handle = await self.directory.register_pending(principal)
        correlation_token = await self.otp_manager.issue(principal, message_parameters)

        state = transition(AuthState.NO_SESSION, AuthState.PENDING_SIGN_UP)
        await self._record_attempt(
            correlation_token,
            PendingAttempt(
                state=state,
                principal=principal,
                account_guid=registration_handle,
                sealed_secret=self.encryption_key.encrypt(secret.encode("utf-8")).decode(
                    "ascii"
                ),
                did_method=did_method or "",
            ),
        )
        logger.info("Sign-up pending for %s", principal)
        return correlation_token

    async def sign_in(self, principal: str, message_parameters: MessageParameters) -> str:
        principal = validate_principal(principal)
        context = await self.directory.authenticate(principal)
        correlation_token = await self.otp_manager.issue(principal, message_parameters)

        state = transition(AuthState.NO_SESSION, AuthState.PENDING_SIGN_IN)
        await self._record_attempt(
            correlation_token,
            PendingAttempt(
                state=state,
                principal=principal,
                account_guid=context.account_guid,
            ),
        )
        logger.info("Sign-in pending for %s", principal)
        return correlation_token

    async def _verify_attempt(
        self, correlation_token: str, supplied_code: str, expected: AuthState
    ) -> PendingAttempt:
        attempt = await self.load_attempt(correlation_token)
        if attempt is None:
            logger.info("Confirmation for unknown or expired attempt")
            raise VerificationFailed()

        try:
            if attempt.state != expected:
                raise IllegalTransition(attempt.state, AuthState.AUTHENTICATED)
            transition(attempt.state, AuthState.AUTHENTICATED)
        except IllegalTransition as e:
            logger.info("Rejected confirmation: %s", e)
            raise VerificationFailed() from e

        await self.otp_manager.verify(correlation_token, supplied_code)
        return attempt

    async def _rollback(
        self, correlation_token: str, access_token: Optional[str], failure: BaseException
    ) -> None:
        logger.warning(
            "Confirmation failed after verification, releasing challenge: %s",
            type(failure).__name__,
        )
        try:
            if access_token is not None:
                await self.directory.revoke(access_token)
        except Exception:
            logger.exception("Unable to revoke access token during rollback")
        finally:
            await self.otp_manager.release(correlation_token)

    async def _issue_signup_credential(
        self, session: IdentitySession, persist: bool, did_method: Optional[str] = None
    ) -> None:
        document = await self.credential_issuer.issue_credential(
            session.account_guid, did_method=did_method
        )
        if persist:
            records = await self.credential_store.save(session.access_token, [document])
        else:
            records = [CredentialRecord.from_document(document)]
        session.credentials.extend(records)
        session.did = self.credential_issuer.did_for(
            session.account_guid, did_method=did_method
        )

    async def confirm_sign_up(
        self,
        correlation_token: str,
        supplied_code: str,
        options: Optional[ConfirmOptions] = None,
    ) -> IdentitySession:
        """
        Raises:
            VerificationFailed: For a wrong, expired, consumed or foreign token
            DirectoryError: If the directory cannot finalize the registration
        """
        options = options or ConfirmOptions()
        attempt = await self._verify_attempt(
            correlation_token, supplied_code, AuthState.PENDING_SIGN_UP
        )

        access_token: Optional[str] = None
        try:
            account_guid = await self.directory.confirm_registration(attempt.account_guid)
            access_token = await self.directory.issue_access_token(
                ChallengeContext(account_guid=account_guid, principal=attempt.principal)
            )
            secret = self.encryption_key.decrypt(
                attempt.sealed_secret.encode("ascii")
            ).decode("utf-8")
            encrypted_seed = encrypt_seed(generate_seed(), secret)

            if not options.skip_backup_encrypted_seed:
                await self.seed_vault.store(access_token, encrypted_seed, secret=secret)

            session = IdentitySession(
                account_guid=account_guid,
                principal=attempt.principal,
                access_token=access_token,
                encrypted_seed=encrypted_seed,
                password=secret,
                state=transition(attempt.state, AuthState.AUTHENTICATED),
            )

            if options.issue_signup_credential and not options.skip_backup_credentials:
                await self._issue_signup_credential(
                    session, persist=True, did_method=attempt.did_method or None
                )

            await self.redis_client.delete(self.attempt_key(correlation_token))
        except BaseException as e:
            # cancellation included: a timed-out confirm stays retryable
            await self._rollback(correlation_token, access_token, e)
            raise

        logger.info("Sign-up confirmed for %s", attempt.principal)
        return session

    async def confirm_sign_in(
        self,
        correlation_token: str,
        supplied_code: str,
        options: Optional[ConfirmOptions] = None,
    ) -> IdentitySession:
        """
        Raises:
            VerificationFailed: For a wrong, expired, consumed or foreign token
            DirectoryError: If the directory cannot issue an access token
        """
        options = options or ConfirmOptions()
        attempt = await self._verify_attempt(
            correlation_token, supplied_code, AuthState.PENDING_SIGN_IN
        )

        access_token: Optional[str] = None
        try:
            access_token = await self.directory.issue_access_token(
                ChallengeContext(
                    account_guid=attempt.account_guid, principal=attempt.principal
                )
            )

            encrypted_seed: Optional[str] = None
            password: Optional[str] = None
            if not options.skip_backup_encrypted_seed:
                try:
                    encrypted_seed = await self.seed_vault.retrieve(access_token)
                    password = await self.seed_vault.retrieve_secret(access_token)
                except SeedNotFound:
                    logger.info(
                        "No seed backup for %s, expecting the caller to store one",
                        attempt.principal,
                    )

            session = IdentitySession(
                account_guid=attempt.account_guid,
                principal=attempt.principal,
                access_token=access_token,
                encrypted_seed=encrypted_seed,
                password=password,
                state=transition(attempt.state, AuthState.AUTHENTICATED),
            )

            if not options.skip_backup_credentials:
                session.credentials.extend(
                    await self.credential_store.list(access_token)
                )

            if options.issue_signup_credential:
                await self._issue_signup_credential(
                    session, persist=not options.skip_backup_credentials
                )

            await self.redis_client.delete(self.attempt_key(correlation_token))
        except BaseException as e:
            await self._rollback(correlation_token, access_token, e)
            raise

        logger.info("Sign-in confirmed for %s", attempt.principal)
        return session

    async def sign_out(self, session: IdentitySession) -> None:
        if session.state == AuthState.AUTHENTICATED:
            session.state = transition(session.state, AuthState.NO_SESSION)
        await self.revoke(session.access_token)

    async def revoke(self, access_token: str) -> None:
        """Invalidate an access token. Unknown and already revoked tokens are ignored."""
        await self.directory.revoke(access_token)

    async def store_encrypted_seed(
        self, old_ciphertext: str, new_ciphertext: str, access_token: str
    ) -> None:
        """
        Raises:
            Unauthenticated: If the access token is not currently valid
        """
        await self.directory.resolve_access_token(access_token)
        await self.seed_vault.rotate(access_token, old_ciphertext, new_ciphertext)
