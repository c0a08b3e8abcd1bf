"""Persistence collaborators for theme records."""

import logging
from typing import Optional

from ..config import Settings, settings
from ..utils.redis_client import connect_redis
from .base import ThemeRepository
from .memory import InMemoryThemeRepository
from .redis_store import RedisThemeRepository

logger = logging.getLogger(settings.SERVICE_NAME + ".storage")


async def build_repository(config: Optional[Settings] = None) -> ThemeRepository:
    """Create the repository selected by STORE_BACKEND."""
    config = config or settings
    if config.STORE_BACKEND == "redis":
        client = await connect_redis(config.REDIS_URL)
        logger.info(f"Using Redis theme store (prefix {config.REDIS_KEY_PREFIX!r})")
        return RedisThemeRepository(
            client,
            key_prefix=config.REDIS_KEY_PREFIX,
            lock_timeout=config.REDIS_LOCK_TIMEOUT,
            lock_blocking_timeout=config.REDIS_LOCK_BLOCKING_TIMEOUT,
        )
    logger.info("Using in-memory theme store")
    return InMemoryThemeRepository()


__all__ = [
    "InMemoryThemeRepository",
    "RedisThemeRepository",
    "ThemeRepository",
    "build_repository",
]
