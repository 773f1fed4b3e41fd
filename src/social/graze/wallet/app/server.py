import asyncio
import contextlib
import logging
from time import time
from typing import Final, Optional

import aiohttp
from aiohttp import web
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.wallet.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    Settings,
    SettingsAppKey,
)
from social.graze.wallet.app.handlers.auth import (
    handle_confirm_sign_in,
    handle_confirm_sign_up,
    handle_sign_in,
    handle_sign_out,
    handle_sign_up,
    handle_store_seed,
)
from social.graze.wallet.app.handlers.credentials import (
    handle_delete_all_credentials,
    handle_delete_credential,
    handle_get_credentials,
    handle_save_credentials,
)
from social.graze.wallet.app.handlers.helpers import WalletServiceAppKey
from social.graze.wallet.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from social.graze.wallet.app.metrics import create_metrics_client
from social.graze.wallet.app.tasks import token_purge_task
from social.graze.wallet.identity.wallet import WalletService

logger = logging.getLogger(__name__)

SessionAppKey: Final = web.AppKey("http_session", aiohttp.ClientSession)
"""AppKey for the outbound HTTP client session (OTP delivery webhook)"""

TokenPurgeTaskAppKey: Final = web.AppKey("token_purge_task", asyncio.Task[None])
"""AppKey for the access token purge task"""


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_async_engine(str(settings.pg_dsn))
    app[DatabaseAppKey] = engine
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session

    app[SessionAppKey] = aiohttp.ClientSession()

    app[RedisClientAppKey] = redis.Redis(
        connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
    )

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    app[WalletServiceAppKey] = WalletService.from_settings(
        settings,
        database_session,
        app[RedisClientAppKey],
        http_session=app[SessionAppKey],
        metrics_client=metrics_client,
    )

    logger.info("Startup complete")

    app[TokenPurgeTaskAppKey] = asyncio.create_task(token_purge_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TokenPurgeTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TokenPurgeTaskAppKey]

    await app[DatabaseAppKey].dispose()
    await app[SessionAppKey].close()
    await app[RedisClientAppKey].aclose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def metrics_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    resource = request.match_info.route.resource
    request_path = resource.canonical if resource is not None else request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "wallet.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "wallet.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "wallet.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def setup_routes(app: web.Application) -> None:
    app.add_routes(
        [
            web.post("/wallet/sign-up", handle_sign_up),
            web.post("/wallet/sign-up/confirm", handle_confirm_sign_up),
            web.post("/wallet/sign-in", handle_sign_in),
            web.post("/wallet/sign-in/confirm", handle_confirm_sign_in),
            web.post("/wallet/sign-out", handle_sign_out),
            web.put("/wallet/seed", handle_store_seed),
        ]
    )

    app.add_routes(
        [
            web.get("/wallet/credentials", handle_get_credentials),
            web.post("/wallet/credentials", handle_save_credentials),
            web.delete("/wallet/credentials", handle_delete_all_credentials),
            web.delete(
                "/wallet/credentials/{credential_id}", handle_delete_credential
            ),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            release=settings.sdk_version,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(middlewares=[metrics_middleware, sentry_middleware])

    app[SettingsAppKey] = settings

    setup_routes(app)

    app.cleanup_ctx.append(background_tasks)

    return app
