import logging

from aiohttp import web
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError

from social.graze.wallet.app.config import (
    DatabaseSessionMakerAppKey,
    RedisClientAppKey,
)

logger = logging.getLogger(__name__)


async def handle_internal_ready(request: web.Request):
    """Ready when both the database and Redis answer."""
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    redis_client = request.app[RedisClientAppKey]
    try:
        async with database_session_maker() as database_session:
            await database_session.execute(text("SELECT 1"))
        await redis_client.ping()
    except (SQLAlchemyError, RedisError, OSError) as e:
        logger.warning("Readiness check failed: %s", type(e).__name__)
        return web.Response(status=503)
    return web.Response(status=200)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)
