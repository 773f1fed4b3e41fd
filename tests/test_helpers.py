"""
Common testing utilities for wallet tests.

Provides fakes for the external collaborators (delivery transport, metrics, clock) and
builders for share-request tokens and credential documents.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jwcrypto import jwk, jwt
from ulid import ULID

from social.graze.wallet.app.metrics import MetricsClient
from social.graze.wallet.identity.errors import DeliveryError
from social.graze.wallet.identity.transport import OTPDeliveryTransport, RenderedMessage


class MutableClock:
    """Injectable clock returning a timezone-aware time that tests can move forward."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingTransport(OTPDeliveryTransport):
    """Delivery transport that keeps every message instead of sending it."""

    def __init__(self):
        self.messages: List[Tuple[str, RenderedMessage]] = []

    async def deliver(self, principal: str, message: RenderedMessage) -> None:
        self.messages.append((principal, message))

    def last_message(self, principal: str) -> RenderedMessage:
        for recipient, message in reversed(self.messages):
            if recipient == principal:
                return message
        raise AssertionError(f"no message delivered to {principal}")

    def last_code(self, principal: str) -> str:
        """The code of the newest message, for templates that are just ``{{CODE}}``."""
        return self.last_message(principal).body


class FailingTransport(OTPDeliveryTransport):
    def __init__(self):
        self.attempts = 0

    async def deliver(self, principal: str, message: RenderedMessage) -> None:
        self.attempts += 1
        raise DeliveryError("relay unavailable")


class MockMetricsClient(MetricsClient):
    """Mock metrics client recording every call."""

    def __init__(self):
        self.gauges: Dict[str, Dict[str, Any]] = {}
        self.increments: Dict[Tuple[str, Tuple], float] = {}
        self.timers: Dict[str, Dict[str, Any]] = {}

    def gauge(self, name, value, tag_dict=None):
        self.gauges[name] = {"value": value, "tags": tag_dict or {}}

    def increment(self, name, value=1, tag_dict=None):
        key = (name, tuple(sorted((tag_dict or {}).items())))
        self.increments[key] = self.increments.get(key, 0) + value

    def timer(self, name, value, tag_dict=None):
        self.timers[name] = {"value": value, "tags": tag_dict or {}}

    def count(self, name: str, **tags: Any) -> float:
        return self.increments.get((name, tuple(sorted(tags.items()))), 0)


def generate_signing_key() -> jwk.JWK:
    return jwk.JWK.generate(kty="EC", crv="P-256", kid=str(ULID()), alg="ES256")


def build_share_request_token(
    requirements: Sequence[Sequence[str]],
    issuer: str = "did:web:verifier.example.com",
    signing_key: Optional[jwk.JWK] = None,
) -> str:
    """Build a signed share-request JWT asking for the given credential types."""
    signing_key = signing_key or generate_signing_key()
    claims = {
        "iss": issuer,
        "jti": str(ULID()),
        "interactionToken": {
            "credentialRequirements": [
                {"type": list(types), "constraints": []} for types in requirements
            ],
            "callbackURL": "https://verifier.example.com/callback",
        },
    }
    token = jwt.JWT(
        header={"alg": "ES256", "kid": signing_key.key_id, "typ": "JWT"},
        claims=claims,
    )
    token.make_signed_token(signing_key)
    return token.serialize()


def w3c_credential(
    credential_id: Optional[str] = None, *types: str
) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "@context": ["https://www.w3.org/2018/credentials/v1"],
        "type": ["VerifiableCredential", *types],
        "issuer": "did:web:issuer.example.com",
        "credentialSubject": {"id": "did:web:holder.example.com"},
    }
    if credential_id is not None:
        document["id"] = credential_id
    return document


def legacy_credential(credential_id: Optional[str] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"claim": {"name": "Alex"}}
    if credential_id is not None:
        data["id"] = credential_id
    return {"data": data, "signature": "legacy-signature"}
