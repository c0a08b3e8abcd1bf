import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from pydantic import RedisDsn

from ..config import settings

logger = logging.getLogger(settings.SERVICE_NAME + ".redis_client")


def describe_dsn(dsn: RedisDsn) -> str:
    """Host/port/db of a Redis URL, without credentials, for log lines."""
    path = dsn.path or "/0"
    return f"{dsn.host}:{dsn.port}{path}"


async def connect_redis(dsn: Optional[RedisDsn] = None) -> aioredis.Redis:
    """
    Open a Redis connection and verify it with PING.

    Args:
        dsn: Redis URL; defaults to settings.REDIS_URL.

    Returns:
        A connected client that decodes responses to str.

    Raises:
        RedisConnectionError / RedisTimeoutError: if the server is unreachable.
    """
    dsn = dsn or settings.REDIS_URL
    logger.info(f"Attempting to connect to Redis at {describe_dsn(dsn)}...")
    client = aioredis.from_url(str(dsn), decode_responses=True)
    try:
        await client.ping()
    except (RedisConnectionError, RedisTimeoutError) as e:
        logger.error(f"Failed to connect to Redis: {e}")
        await client.aclose()
        raise
    logger.info("Successfully connected to Redis.")
    return client
