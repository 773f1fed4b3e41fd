"""
OTP Challenge Manager

Issues and verifies short-lived one-time passcodes that prove control of a principal
identifier (email address or phone number).

Challenges are kept in Redis:

- ``wallet:otp:{token}`` is a hash with the principal, the HMAC digest of the code and
  the absolute expiry. Its TTL equals the OTP lifetime, so expired challenges are
  garbage-collected by Redis.
- ``wallet:otp:{token}:consumed`` is the single-use marker. It is written with
  ``SET NX``, so among concurrent confirmations exactly one consumes the challenge.
- ``wallet:otp:principal:{principal}`` points at the newest pending token for a
  principal. Issuing a new challenge discards the previous one.

Verification failures are logged with their internal reason and raised to callers as a
single ``VerificationFailed`` kind so a wrong code cannot be told apart from an unknown
or expired challenge.
"""

import enum
import hashlib
import hmac
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis.asyncio as redis
from pydantic import BaseModel

from social.graze.wallet.app.config import OTP_CHALLENGE_PREFIX
from social.graze.wallet.identity.errors import (
    DeliveryError,
    InvalidTemplate,
    VerificationFailed,
)
from social.graze.wallet.identity.helpers import normalize_redis_string
from social.graze.wallet.identity.transport import OTPDeliveryTransport, RenderedMessage

logger = logging.getLogger(__name__)

CODE_PLACEHOLDER = "{{CODE}}"


class MessageParameters(BaseModel):
    """Template for the OTP message. ``message`` must contain ``{{CODE}}``."""

    message: str
    subject: str
    html_message: Optional[str] = None

    def render(self, code: str) -> RenderedMessage:
        if CODE_PLACEHOLDER not in self.message:
            raise InvalidTemplate()
        html_body = None
        if self.html_message is not None:
            html_body = self.html_message.replace(CODE_PLACEHOLDER, code)
        return RenderedMessage(
            subject=self.subject,
            body=self.message.replace(CODE_PLACEHOLDER, code),
            html_body=html_body,
        )


class VerificationFailure(str, enum.Enum):
    UNKNOWN = "unknown"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    CODE_MISMATCH = "code_mismatch"


@dataclass(frozen=True)
class OTPChallenge:
    correlation_token: str
    principal: str
    code_digest: str
    expires_at: datetime
    consumed: bool = False


def code_digest(correlation_token: str, code: str) -> str:
    return hmac.new(
        correlation_token.encode("utf-8"), code.encode("utf-8"), hashlib.sha256
    ).hexdigest()


class OTPChallengeManager:
    def __init__(
        self,
        redis_client: redis.Redis,
        transport: OTPDeliveryTransport,
        expiry: int = 600,
        code_length: int = 6,
        alphanumeric: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.redis_client = redis_client
        self.transport = transport
        self.expiry = expiry
        self.code_length = code_length
        self.alphabet = (
            string.digits + string.ascii_uppercase if alphanumeric else string.digits
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def challenge_key(correlation_token: str) -> str:
        return f"{OTP_CHALLENGE_PREFIX}:{correlation_token}"

    @staticmethod
    def consumed_key(correlation_token: str) -> str:
        return f"{OTP_CHALLENGE_PREFIX}:{correlation_token}:consumed"

    @staticmethod
    def principal_key(principal: str) -> str:
        return f"{OTP_CHALLENGE_PREFIX}:principal:{principal}"

    def generate_code(self) -> str:
        return "".join(secrets.choice(self.alphabet) for _ in range(self.code_length))

    async def issue(self, principal: str, message_parameters: MessageParameters) -> str:
        """
        Create a challenge for a principal and deliver its code.

        Returns the correlation token immediately usable for confirmation.

        Raises:
            InvalidTemplate: If the message template lacks the code placeholder
            DeliveryError: If the transport cannot accept the message
        """
        code = self.generate_code()
        rendered = message_parameters.render(code)

        correlation_token = secrets.token_urlsafe(32)
        expires_at = self.clock() + timedelta(0, self.expiry)

        previous_token = await self.redis_client.get(self.principal_key(principal))
        if previous_token is not None:
            await self.discard(normalize_redis_string(previous_token))

        async with self.redis_client.pipeline(transaction=True) as redis_pipe:
            redis_pipe.hset(
                self.challenge_key(correlation_token),
                mapping={
                    "principal": principal,
                    "code_digest": code_digest(correlation_token, code),
                    "expires_at": expires_at.isoformat(),
                },
            )
            redis_pipe.expire(self.challenge_key(correlation_token), self.expiry)
            redis_pipe.set(
                self.principal_key(principal), correlation_token, ex=self.expiry
            )
            await redis_pipe.execute()

        try:
            await self.transport.deliver(principal, rendered)
        except DeliveryError:
            await self.discard(correlation_token)
            raise

        logger.debug("Issued OTP challenge for %s expiring %s", principal, expires_at)
        return correlation_token

    async def get(self, correlation_token: str) -> Optional[OTPChallenge]:
        values = await self.redis_client.hgetall(self.challenge_key(correlation_token))
        if not values:
            return None

        fields = {
            normalize_redis_string(key): normalize_redis_string(value)
            for key, value in values.items()
        }
        consumed = await self.redis_client.exists(self.consumed_key(correlation_token))
        return OTPChallenge(
            correlation_token=correlation_token,
            principal=fields["principal"],
            code_digest=fields["code_digest"],
            expires_at=datetime.fromisoformat(fields["expires_at"]),
            consumed=bool(consumed),
        )

    async def check(
        self, correlation_token: str, supplied_code: str
    ) -> Optional[VerificationFailure]:
        """
        Verify and consume a challenge, returning the failure reason or None on success.

        This is the internal form of ``verify``; the reason must not reach callers.
        """
        challenge = await self.get(correlation_token)
        if challenge is None:
            return VerificationFailure.UNKNOWN

        if challenge.consumed:
            return VerificationFailure.ALREADY_CONSUMED

        if self.clock() >= challenge.expires_at:
            return VerificationFailure.EXPIRED

        if not hmac.compare_digest(
            challenge.code_digest, code_digest(correlation_token, supplied_code)
        ):
            return VerificationFailure.CODE_MISMATCH

        consumed = await self.redis_client.set(
            self.consumed_key(correlation_token), "1", nx=True, ex=self.expiry
        )
        if not consumed:
            return VerificationFailure.ALREADY_CONSUMED

        return None

    async def verify(self, correlation_token: str, supplied_code: str) -> None:
        """
        Raises:
            VerificationFailed: For any unknown, consumed, expired or mismatched challenge
        """
        failure = await self.check(correlation_token, supplied_code)
        if failure is not None:
            logger.info("OTP verification failed: %s", failure.value)
            raise VerificationFailed()

    async def release(self, correlation_token: str) -> None:
        """Undo a consumption so the challenge can be confirmed again until expiry."""
        await self.redis_client.delete(self.consumed_key(correlation_token))

    async def discard(self, correlation_token: str) -> None:
        challenge = await self.get(correlation_token)
        keys = [
            self.challenge_key(correlation_token),
            self.consumed_key(correlation_token),
        ]
        if challenge is not None:
            current = await self.redis_client.get(self.principal_key(challenge.principal))
            if current is not None and normalize_redis_string(current) == correlation_token:
                keys.append(self.principal_key(challenge.principal))
        await self.redis_client.delete(*keys)
