import json
import logging
from typing import Any, Dict, Final, Optional, Type, TypeVar

from aiohttp import web
from pydantic import BaseModel, ValidationError

from social.graze.wallet.identity.credentials import CredentialRecord
from social.graze.wallet.identity.errors import Unauthenticated, WalletError
from social.graze.wallet.identity.wallet import Wallet, WalletService

logger = logging.getLogger(__name__)

WalletServiceAppKey: Final = web.AppKey("wallet_service", WalletService)
"""AppKey for the wallet facade"""

M = TypeVar("M", bound=BaseModel)


def bearer_token(request: web.Request) -> str:
    """
    Return the bearer token of the ``Authorization`` header.

    Raises:
        Unauthenticated: If the header is missing or not a bearer token
    """
    authorization: Optional[str] = request.headers.getone("Authorization", None)
    if (
        authorization is None
        or not authorization.startswith("Bearer ")
        or len(authorization) < 8
    ):
        raise Unauthenticated()
    return authorization[7:]


async def parse_body(request: web.Request, model: Type[M]) -> M:
    """Validate the JSON request body, answering 400 when it does not fit ``model``."""
    try:
        data = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text='{"error": "invalid JSON body"}', content_type="application/json"
        )
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": str(e)}),
            content_type="application/json",
        )


def error_response(error: WalletError) -> web.Response:
    return web.json_response(status=error.status, data={"error": str(error)})


def credential_payload(record: CredentialRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "kind": record.kind.value,
        "types": list(record.types),
        "document": record.payload,
    }


def wallet_payload(wallet: Wallet) -> Dict[str, Any]:
    return {
        "access_token": wallet.access_token,
        "encrypted_seed": wallet.encrypted_seed,
        "password": wallet.password,
        "did": wallet.did,
        "credentials": [credential_payload(record) for record in wallet.credentials],
    }
