import logging
from typing import Any, Dict, List

from aiohttp import web
from pydantic import BaseModel

from social.graze.wallet.app.handlers.helpers import (
    WalletServiceAppKey,
    bearer_token,
    credential_payload,
    error_response,
    parse_body,
)
from social.graze.wallet.identity.errors import WalletError

logger = logging.getLogger(__name__)


class SaveCredentialsRequest(BaseModel):
    credentials: List[Dict[str, Any]]


async def handle_get_credentials(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    share_request = request.query.get("share_request", None)
    try:
        records = await wallet_service.get_credentials(
            bearer_token(request), share_request
        )
    except WalletError as e:
        return error_response(e)
    return web.json_response([credential_payload(record) for record in records])


async def handle_save_credentials(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    try:
        access_token = bearer_token(request)
        body = await parse_body(request, SaveCredentialsRequest)
        records = await wallet_service.save_credentials(access_token, body.credentials)
    except WalletError as e:
        return error_response(e)
    return web.json_response(
        status=201, data=[credential_payload(record) for record in records]
    )


async def handle_delete_credential(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    try:
        await wallet_service.delete_credential(
            bearer_token(request), request.match_info["credential_id"]
        )
    except WalletError as e:
        return error_response(e)
    return web.Response(status=204)


async def handle_delete_all_credentials(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    try:
        await wallet_service.delete_all_credentials(bearer_token(request))
    except WalletError as e:
        return error_response(e)
    return web.Response(status=204)
