"""Self-issued enrollment credentials.

When a confirmation asks for ``issue_signup_credential``, the wallet creates a W3C-shaped
credential attesting that the principal enrolled, signed by the service key as a
compact ES256 JWS carried in the credential's ``proof``.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence

from jwcrypto import jwk, jws
from jwcrypto.common import json_encode
from ulid import ULID

from social.graze.wallet.identity.helpers import (
    strip_params_from_did_url,
    validate_did_method_supported,
)

CREDENTIALS_CONTEXT = "https://www.w3.org/2018/credentials/v1"
ENROLLMENT_CREDENTIAL_TYPE = "WalletEnrollmentCredential"


class CredentialIssuer(ABC):
    @abstractmethod
    def did_for(self, account_guid: str, did_method: Optional[str] = None) -> str:
        """Return the DID bound to an account, in the default method unless given."""

    @abstractmethod
    async def issue_credential(
        self, account_guid: str, did_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """Issue a credential document attesting the account's enrollment."""


class SelfIssuedCredentialIssuer(CredentialIssuer):
    def __init__(
        self,
        signing_key: jwk.JWK,
        hostname: str,
        did_method: str = "web",
        supported_did_methods: Sequence[str] = ("web",),
        sdk_version: str = "0.0.0",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        validate_did_method_supported(did_method, supported_did_methods)
        self.signing_key = signing_key
        self.hostname = hostname
        self.did_method = did_method
        self.supported_did_methods = tuple(supported_did_methods)
        self.sdk_version = sdk_version
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def issuer_did(self) -> str:
        return f"did:{self.did_method}:{self.hostname}"

    def did_for(self, account_guid: str, did_method: Optional[str] = None) -> str:
        if did_method is None:
            return f"{self.issuer_did}:accounts:{account_guid}"
        validate_did_method_supported(did_method, self.supported_did_methods)
        return f"did:{did_method}:{self.hostname}:accounts:{account_guid}"

    async def issue_credential(
        self, account_guid: str, did_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Raises:
            UnsupportedDidMethod: If ``did_method`` is not supported
        """
        issued_at = self.clock()
        subject_did = strip_params_from_did_url(self.did_for(account_guid, did_method))
        credential: Dict[str, Any] = {
            "@context": [CREDENTIALS_CONTEXT],
            "id": f"urn:ulid:{ULID()}",
            "type": ["VerifiableCredential", ENROLLMENT_CREDENTIAL_TYPE],
            "issuer": self.issuer_did,
            "issuanceDate": issued_at.isoformat(),
            "credentialSubject": {
                "id": subject_did,
                "enrolledAt": issued_at.isoformat(),
                "walletVersion": self.sdk_version,
            },
        }

        signature = jws.JWS(json.dumps(credential, sort_keys=True).encode("utf-8"))
        signature.add_signature(
            self.signing_key,
            alg="ES256",
            protected=json_encode({"alg": "ES256", "kid": self.signing_key.key_id}),
        )

        credential["proof"] = {
            "type": "JsonWebSignature2020",
            "created": issued_at.isoformat(),
            "verificationMethod": f"{self.issuer_did}#{self.signing_key.key_id}",
            "proofPurpose": "assertionMethod",
            "jws": signature.serialize(compact=True),
        }
        return credential
