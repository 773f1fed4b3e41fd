import asyncio
from datetime import datetime, timezone
import logging
from time import time
from typing import NoReturn

from aiohttp import web
from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import sentry_sdk

from social.graze.wallet.app.config import (
    DatabaseSessionMakerAppKey,
    MetricsClientAppKey,
    SettingsAppKey,
)
from social.graze.wallet.model.account import AccessToken

logger = logging.getLogger(__name__)


async def purge_expired_access_tokens(
    database_session_maker: async_sessionmaker[AsyncSession],
    now: datetime,
) -> int:
    """
    Delete access token rows that expired or were revoked before ``now``.

    Returns the number of deleted rows.
    """
    async with database_session_maker() as database_session:
        async with database_session.begin():
            purge_stmt = delete(AccessToken).where(
                or_(
                    AccessToken.expires_at <= now,
                    AccessToken.revoked_at.is_not(None),
                )
            )
            result = await database_session.execute(purge_stmt)
            return result.rowcount or 0


async def token_purge_task(app: web.Application) -> NoReturn:
    """
    Purge expired and revoked access tokens every ``token_purge_interval`` seconds.

    Failures are reported and the loop keeps running.
    """

    logger.info("Starting access token purge task")

    settings = app[SettingsAppKey]
    database_session_maker = app[DatabaseSessionMakerAppKey]
    metrics_client = app[MetricsClientAppKey]

    while True:
        await asyncio.sleep(settings.token_purge_interval)

        start_time = time()
        try:
            purged = await purge_expired_access_tokens(
                database_session_maker, datetime.now(timezone.utc)
            )
            if purged > 0:
                logger.info("Purged %d access tokens", purged)
            metrics_client.gauge("wallet.task.token_purge.purged", purged)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("access token purge failed")
            metrics_client.increment(
                "wallet.task.token_purge.exception",
                1,
                tag_dict={"exception": type(e).__name__},
            )
        finally:
            metrics_client.timer("wallet.task.token_purge.time", time() - start_time)
