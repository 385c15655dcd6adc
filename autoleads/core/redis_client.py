"""
Redis client for the cross-worker conversation lease.

Only needed when CONVERSATION_LOCK_BACKEND is "redis"; the memory backend never connects.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from autoleads.core.config import settings
from autoleads.core.exceptions import ExternalServiceException
from autoleads.core.logging import get_logger

logger = get_logger(__name__)

_client: aioredis.Redis | None = None
_connect_lock: asyncio.Lock | None = None


def masked_url(url: str) -> str:
    """REDIS_URL with the password replaced, for logs"""
    try:
        password = urlparse(url).password
    except ValueError:
        return "redis://****"
    return url.replace(f":{password}@", ":****@") if password else url


async def get_redis() -> aioredis.Redis:
    """
    Shared client, connected and pinged on first use.

    Raises:
        ExternalServiceException: Redis is unreachable.
    """
    global _client, _connect_lock
    if _client is not None:
        return _client

    if _connect_lock is None:
        _connect_lock = asyncio.Lock()
    async with _connect_lock:
        if _client is None:
            client = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            )
            try:
                await client.ping()
            except RedisError as exc:
                await client.aclose()
                raise ExternalServiceException(
                    "redis",
                    "Redis is unreachable",
                    details={"url": masked_url(settings.REDIS_URL), "error": str(exc)},
                ) from exc
            _client = client
            logger.info("Redis connected", extra_data={"url": masked_url(settings.REDIS_URL)})
    return _client


async def redis_status() -> str:
    """"ok" or "error", for the health endpoint"""
    try:
        redis = await get_redis()
        await redis.ping()
    except (ExternalServiceException, RedisError) as exc:
        logger.warning("Redis health check failed", extra_data={"error": str(exc)})
        return "error"
    return "ok"


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")
