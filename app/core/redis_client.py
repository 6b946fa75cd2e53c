"""
Redis Client - one shared async connection pool per process.

Two consumers: the platform settings cache and the pub/sub fan-out of
order and wallet events. Celery workers close the client at the end of
every task because each task runs on its own event loop.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """redis://:secret@host:6379/0 -> redis://:****@host:6379/0"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "redis://****"
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


def _build_client() -> aioredis.Redis:
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=30,
    )


async def get_redis() -> aioredis.Redis:
    """
    Return the process-wide client, connecting on first use.

    A client whose first ping fails is closed and not kept, so the next
    caller retries the connection instead of reusing a dead pool.
    """
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = _build_client()
        try:
            await client.ping()
        except (RedisError, OSError):
            await client.aclose()
            logger.warning(
                "Redis unreachable",
                extra_data={"url": _mask_redis_url(settings.REDIS_URL)},
            )
            raise
        _redis_client = client
        logger.info(
            "Redis client initialized",
            extra_data={"url": _mask_redis_url(settings.REDIS_URL)},
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
