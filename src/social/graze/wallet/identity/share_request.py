"""
Share-request token decoding.

A share request is a JWT issued by a verifier asking the holder to disclose credentials.
Its claims carry the requested credential types at
``interactionToken.credentialRequirements[].type``. Verifying the token's signature and
issuer belongs to the verifier-facing collaborator; the decoder here only extracts the
type constraints used to filter the credential store.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from jwcrypto import jws
from jwcrypto.common import JWException

from social.graze.wallet.identity.errors import InvalidShareToken


@dataclass(frozen=True)
class ShareRequest:
    """Decoded share request.

    Each requirement is the tuple of types a credential must carry; a credential
    satisfies the request when it satisfies at least one requirement.
    """

    requirements: Tuple[Tuple[str, ...], ...] = ()
    issuer: str = ""
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)


class ShareRequestDecoder(ABC):
    @abstractmethod
    def decode(self, token: str) -> ShareRequest:
        """Decode a share-request token.

        Raises:
            InvalidShareToken: If the token cannot be decoded
        """


class JwtShareRequestDecoder(ShareRequestDecoder):
    def decode(self, token: str) -> ShareRequest:
        if not isinstance(token, str) or not token:
            raise InvalidShareToken("Share request token is empty")

        # Signature is not checked here, only the structure.
        share_request_jws = jws.JWS()
        try:
            share_request_jws.deserialize(token)
        except JWException as e:
            raise InvalidShareToken("Share request token is not a JWS") from e

        try:
            claims = json.loads(share_request_jws.objects["payload"])
        except (KeyError, ValueError) as e:
            raise InvalidShareToken("Share request token payload is not valid JSON") from e

        if not isinstance(claims, dict):
            raise InvalidShareToken("Share request token payload is not an object")

        interaction_token = claims.get("interactionToken")
        if not isinstance(interaction_token, dict):
            raise InvalidShareToken("Share request token has no interactionToken")

        credential_requirements = interaction_token.get("credentialRequirements", [])
        if not isinstance(credential_requirements, list):
            raise InvalidShareToken("credentialRequirements must be a list")

        requirements = []
        for requirement in credential_requirements:
            types = requirement.get("type") if isinstance(requirement, dict) else None
            if not isinstance(types, list) or not all(isinstance(t, str) for t in types):
                raise InvalidShareToken("credential requirement type must be a list of strings")
            requirements.append(tuple(types))

        return ShareRequest(
            requirements=tuple(requirements),
            issuer=str(claims.get("iss", "")),
            claims=claims,
        )
