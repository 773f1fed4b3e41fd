import logging
from typing import Optional

from aiohttp import web
from pydantic import BaseModel

from social.graze.wallet.app.handlers.helpers import (
    WalletServiceAppKey,
    bearer_token,
    error_response,
    parse_body,
    wallet_payload,
)
from social.graze.wallet.identity.authenticator import ConfirmOptions, SignUpOptions
from social.graze.wallet.identity.errors import WalletError
from social.graze.wallet.identity.otp import MessageParameters

logger = logging.getLogger(__name__)


class SignUpRequest(BaseModel):
    principal: str
    password: Optional[str] = None
    options: Optional[SignUpOptions] = None
    message_parameters: Optional[MessageParameters] = None


class SignInRequest(BaseModel):
    principal: str
    message_parameters: Optional[MessageParameters] = None


class ConfirmRequest(BaseModel):
    token: str
    code: str
    options: Optional[ConfirmOptions] = None


class StoreSeedRequest(BaseModel):
    old_encrypted_seed: str = ""
    new_encrypted_seed: str


async def handle_sign_up(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    body = await parse_body(request, SignUpRequest)
    try:
        token = await wallet_service.sign_up(
            body.principal,
            body.password,
            options=body.options,
            message_parameters=body.message_parameters,
        )
    except WalletError as e:
        return error_response(e)
    return web.json_response(status=202, data={"token": token})


async def handle_confirm_sign_up(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    body = await parse_body(request, ConfirmRequest)
    try:
        wallet = await wallet_service.confirm_sign_up(body.token, body.code, body.options)
    except WalletError as e:
        return error_response(e)
    return web.json_response(wallet_payload(wallet))


async def handle_sign_in(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    body = await parse_body(request, SignInRequest)
    try:
        token = await wallet_service.sign_in(
            body.principal, message_parameters=body.message_parameters
        )
    except WalletError as e:
        return error_response(e)
    return web.json_response(status=202, data={"token": token})


async def handle_confirm_sign_in(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    body = await parse_body(request, ConfirmRequest)
    try:
        wallet = await wallet_service.confirm_sign_in(body.token, body.code, body.options)
    except WalletError as e:
        return error_response(e)
    return web.json_response(wallet_payload(wallet))


async def handle_sign_out(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    try:
        await wallet_service.sign_out(bearer_token(request))
    except WalletError as e:
        return error_response(e)
    return web.Response(status=204)


async def handle_store_seed(request: web.Request) -> web.Response:
    wallet_service = request.app[WalletServiceAppKey]
    try:
        access_token = bearer_token(request)
        body = await parse_body(request, StoreSeedRequest)
        await wallet_service.store_encrypted_seed(
            body.old_encrypted_seed, body.new_encrypted_seed, access_token
        )
    except WalletError as e:
        return error_response(e)
    return web.Response(status=204)
