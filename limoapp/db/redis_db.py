import asyncio
import logging
from typing import Optional

import redis.asyncio as redis

from limoapp.config.settings import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Shared client over a single connection pool, created on first use."""
    global _client
    if _client is None:
        pool = redis.ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.redis_password,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        _client = redis.Redis(connection_pool=pool)
        logger.info(f"Redis pool created for {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    return _client


async def check_redis_connection():
    """Test connection to Redis and log if it fails."""
    try:
        pong = await get_redis_client().ping()
        if pong:
            logger.info("Connected to Redis successfully.")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise  # fail fast instead of silently continuing


async def close_redis_connection():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


if __name__ == "__main__":
    asyncio.run(check_redis_connection())
